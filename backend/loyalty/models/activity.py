from __future__ import annotations

from ..extensions import db
from loyalty.time_utils import to_utc_z


REDEMPTION_STATUS_PENDING = "pending"
REDEMPTION_STATUS_APPROVED = "approved"   # reserved, no workflow sets it
REDEMPTION_STATUS_REJECTED = "rejected"   # reserved, no workflow sets it
REDEMPTION_STATUS_COMPLETED = "completed"

REDEMPTION_STATUSES = (
    REDEMPTION_STATUS_PENDING,
    REDEMPTION_STATUS_APPROVED,
    REDEMPTION_STATUS_REJECTED,
    REDEMPTION_STATUS_COMPLETED,
)


class Transaction(db.Model):
    """
    Points-earning event.

    IMMUTABLE: created once per accepted scan and never updated.
    created_at comes from the pipeline clock so the duplicate and velocity
    windows are evaluated against the same time source that wrote the rows.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_member_created", "member_id", "created_at"),
        db.Index("ix_transactions_member_staff_created", "member_id", "created_by", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)

    action = db.Column(db.String(64), nullable=False)
    amount = db.Column(db.Numeric(15, 2), nullable=False)
    points_earned = db.Column(db.Numeric(15, 2), nullable=False)

    reference_no = db.Column(db.String(64), nullable=False, unique=True, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    member = db.relationship("Member", backref=db.backref("transactions", lazy=True))
    category = db.relationship("Category")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "category_id": self.category_id,
            "action": self.action,
            "amount": str(self.amount),
            "points_earned": str(self.points_earned),
            "reference_no": self.reference_no,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class Redemption(db.Model):
    """
    Reward claim by a member.

    points_used snapshots the reward cost at redemption time.
    Created PENDING; staff move it to COMPLETED when the item is handed over.
    """
    __tablename__ = "redemptions"
    __table_args__ = (
        db.Index("ix_redemptions_member_status", "member_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reward_id = db.Column(db.Integer, db.ForeignKey("rewards.id"), nullable=False, index=True)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id"), nullable=False, index=True)

    points_used = db.Column(db.Numeric(15, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=REDEMPTION_STATUS_PENDING)

    processed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    reward = db.relationship("Reward", backref=db.backref("redemptions", lazy="dynamic"))
    member = db.relationship("Member", backref=db.backref("redemptions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reward_id": self.reward_id,
            "reward_name": self.reward.name if self.reward else None,
            "member_id": self.member_id,
            "points_used": str(self.points_used),
            "status": self.status,
            "processed_by": self.processed_by,
            "processed_at": to_utc_z(self.processed_at),
            "created_at": to_utc_z(self.created_at),
        }
