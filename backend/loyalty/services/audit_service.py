# Overview: Append-only audit sink shared by every pipeline.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from ..context import RequestContext
from ..extensions import db
from ..models import AuditLogEntry, EntityKind
from loyalty.time_utils import to_utc_z
"""
Audit Sink Invariants (authoritative)

- Append-only: this module exposes append and read operations, nothing else.
- Entries are written inside the same DB transaction as the business
  mutation they describe; the caller's unit of work commits or discards both.
- The subject is a tagged (EntityKind, id) pair, never a class name string.
"""


# Action names
FRAUD_EVALUATION = "FRAUD_EVALUATION"
FRAUD_BLOCK = "FRAUD_BLOCK"
TRANSACTION_FLAGGED = "TRANSACTION_FLAGGED"
TRANSACTION_CREATED = "TRANSACTION_CREATED"
REDEMPTION_REQUEST = "REDEMPTION_REQUEST"
REDEMPTION_COMPLETED = "REDEMPTION_COMPLETED"
MEMBER_CREATED = "MEMBER_CREATED"
CATEGORY_CREATED = "CATEGORY_CREATED"
POINT_RULE_CREATED = "POINT_RULE_CREATED"
POINT_RULE_UPDATED = "POINT_RULE_UPDATED"
REWARD_CREATED = "REWARD_CREATED"
REWARD_UPDATED = "REWARD_UPDATED"
REWARD_DEACTIVATED = "REWARD_DEACTIVATED"
REWARD_DELETED = "REWARD_DELETED"


@dataclass(frozen=True)
class AuditSubject:
    kind: EntityKind
    id: int


def subject(kind: EntityKind, entity_id: int) -> AuditSubject:
    return AuditSubject(kind=kind, id=entity_id)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def append_audit_entry(
    action: str,
    *,
    ctx: RequestContext,
    subject: Optional[AuditSubject] = None,
    payload: Optional[dict] = None,
    actor_id: int | None = None,
    occurred_at: Optional[datetime] = None,
) -> AuditLogEntry:
    """
    Append one audit entry to the current unit of work.

    actor_id overrides ctx.actor_id (e.g. system actions on behalf of a user).
    occurred_at defaults to the database clock.
    """
    entry = AuditLogEntry(
        action=action,
        subject_kind=subject.kind.value if subject else None,
        subject_id=subject.id if subject else None,
        user_id=actor_id if actor_id is not None else ctx.actor_id,
        payload=_jsonable(payload or {}),
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
        created_at=occurred_at,  # if None, db default applies
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def list_audit_entries(
    *,
    action: str | None = None,
    subject_kind: EntityKind | None = None,
    subject_id: int | None = None,
    user_id: int | None = None,
    limit: int = 100,
) -> list[AuditLogEntry]:
    """Read entries newest first."""
    q = db.session.query(AuditLogEntry)
    if action:
        q = q.filter(AuditLogEntry.action == action)
    if subject_kind is not None:
        q = q.filter(AuditLogEntry.subject_kind == subject_kind.value)
    if subject_id is not None:
        q = q.filter(AuditLogEntry.subject_id == subject_id)
    if user_id is not None:
        q = q.filter(AuditLogEntry.user_id == user_id)
    limit = max(1, min(limit, 500))
    return q.order_by(AuditLogEntry.id.desc()).limit(limit).all()
