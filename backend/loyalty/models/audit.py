from __future__ import annotations

import enum

from sqlalchemy import event

from ..extensions import db
from loyalty.time_utils import to_utc_z


class EntityKind(str, enum.Enum):
    """Kinds of entity an audit entry can be about."""
    MEMBER = "member"
    TRANSACTION = "transaction"
    REDEMPTION = "redemption"
    REWARD = "reward"
    CATEGORY = "category"
    POINT_RULE = "point_rule"
    USER = "user"


class AuditImmutableError(RuntimeError):
    """Raised when something tries to flush an UPDATE or DELETE of an audit entry."""


class AuditLogEntry(db.Model):
    """
    Append-only record of every state-changing action.

    IMMUTABLE: Never update or delete. The audit service only exposes an
    append operation, and the mapper events below refuse to flush changes to
    rows that already exist.

    Written inside the same unit of work as the business mutation it
    describes, so a rollback removes both.
    """
    __tablename__ = "audit_log_entries"
    __table_args__ = (
        db.Index("ix_audit_log_subject", "subject_kind", "subject_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    action = db.Column(db.String(64), nullable=False, index=True)  # TRANSACTION_CREATED, FRAUD_BLOCK, ...

    subject_kind = db.Column(db.String(32), nullable=True)  # EntityKind value
    subject_id = db.Column(db.Integer, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)  # Nullable for system actions
    payload = db.Column(db.JSON, nullable=False, default=dict)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "subject_kind": self.subject_kind,
            "subject_id": self.subject_id,
            "user_id": self.user_id,
            "payload": self.payload,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(AuditLogEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditImmutableError("Audit log entries are immutable and cannot be updated.")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditImmutableError("Audit log entries are immutable and cannot be deleted.")
