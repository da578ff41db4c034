from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from loyalty.time_utils import to_utc_z


MEMBER_STATUS_ACTIVE = "active"
MEMBER_STATUS_INACTIVE = "inactive"
MEMBER_STATUS_SUSPENDED = "suspended"

MEMBER_STATUSES = (MEMBER_STATUS_ACTIVE, MEMBER_STATUS_INACTIVE, MEMBER_STATUS_SUSPENDED)

RISK_SCORE_MIN = 0
RISK_SCORE_MAX = 100


class Member(db.Model):
    """
    Loyalty program member.

    member_code is the identity printed into signed QR payloads.
    Every member owns exactly one LoyaltyBalance row; it is created together
    with the member and lazily re-created by the pipelines if missing.
    """
    __tablename__ = "members"
    __table_args__ = (
        db.Index("ix_members_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    member_code = db.Column(db.String(64), nullable=False, unique=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    branch = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=MEMBER_STATUS_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    balance = db.relationship("LoyaltyBalance", uselist=False, back_populates="member", lazy=True)
    risk_score = db.relationship("FraudRiskScore", uselist=False, back_populates="member", lazy=True)

    @property
    def is_active(self) -> bool:
        return self.status == MEMBER_STATUS_ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_code": self.member_code,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "branch": self.branch,
            "status": self.status,
            "balance": str(self.balance.balance) if self.balance else "0.00",
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LoyaltyBalance(db.Model):
    """
    Current points balance for a member (1:1).

    Mutated only by the transaction pipeline (credit) and the redemption
    pipeline (debit), always under a row lock taken in the same unit of work.
    """
    __tablename__ = "loyalty_balances"
    __table_args__ = (
        db.UniqueConstraint("member_id", name="uq_loyalty_balances_member"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)

    balance = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    member = db.relationship("Member", back_populates="balance")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "member_id": self.member_id,
            "balance": str(self.balance),
            "updated_at": to_utc_z(self.updated_at),
        }


class FraudRiskScore(db.Model):
    """
    Cumulative fraud risk for a member, clamped to [0, 100].

    Each evaluation's delta is added by the transaction pipeline; the score
    is never reset.
    """
    __tablename__ = "fraud_risk_scores"
    __table_args__ = (
        db.UniqueConstraint("member_id", name="uq_fraud_risk_scores_member"),
        db.Index("ix_fraud_risk_scores_score", "risk_score"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)

    risk_score = db.Column(db.Integer, nullable=False, default=0)
    last_evaluated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    member = db.relationship("Member", back_populates="risk_score")

    @validates("risk_score")
    def _clamp_risk_score(self, key, value):
        return max(RISK_SCORE_MIN, min(RISK_SCORE_MAX, int(value)))

    def to_dict(self) -> dict:
        return {
            "member_id": self.member_id,
            "risk_score": self.risk_score,
            "last_evaluated_at": to_utc_z(self.last_evaluated_at),
        }
