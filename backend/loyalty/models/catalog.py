from __future__ import annotations

import enum

from ..extensions import db
from loyalty.time_utils import to_utc_z


class RuleKind(str, enum.Enum):
    """
    Closed set of point-rule kinds.

    The points engine keeps one calculator per kind; adding a kind means
    adding a member here and its calculator there.
    """
    FIXED = "fixed"
    MULTIPLIER = "multiplier"


class Category(db.Model):
    """Named transaction classification (e.g. Purchase, Loan Payment)."""
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    slug = db.Column(db.String(128), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    rules = db.relationship("PointRule", back_populates="category", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PointRule(db.Model):
    """
    Earning rule for a (category, action) pair.

    FIXED: `value` points per qualifying transaction.
    MULTIPLIER: `value` is the divisor, floor(amount / value) points.

    Every active rule matching a transaction contributes; rules stack.
    """
    __tablename__ = "point_rules"
    __table_args__ = (
        db.Index("ix_point_rules_lookup", "category_id", "action", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False)  # PURCHASE, PAYMENT, ATTENDANCE, ...

    rule_type = db.Column(db.String(16), nullable=False)  # RuleKind value
    value = db.Column(db.Numeric(10, 4), nullable=False)
    min_amount = db.Column(db.Numeric(15, 2), nullable=True)
    max_points = db.Column(db.Numeric(15, 2), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    category = db.relationship("Category", back_populates="rules")

    @property
    def kind(self) -> RuleKind:
        return RuleKind(self.rule_type)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "action": self.action,
            "rule_type": self.rule_type,
            "value": str(self.value),
            "min_amount": str(self.min_amount) if self.min_amount is not None else None,
            "max_points": str(self.max_points) if self.max_points is not None else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Reward(db.Model):
    """
    Redeemable catalog item.

    Stock is decremented under a row lock by the redemption pipeline.
    Rewards with redemption history are deactivated instead of deleted.
    """
    __tablename__ = "rewards"
    __table_args__ = (
        db.Index("ix_rewards_active_stock", "is_active", "stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    points_required = db.Column(db.Numeric(15, 2), nullable=False)
    stock = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "points_required": str(self.points_required),
            "stock": self.stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
