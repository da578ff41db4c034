# Overview: Atomic points-transaction pipeline (duplicate guard, fraud gate, credit, audit).

"""
Points Transaction Pipeline

    Received -> Validated -> Deduplicated -> Scored -> Committed
                                                    +-> Rejected (duplicate, not found)
                                                    +-> Blocked  (HIGH fraud risk)

Everything from the member lookup to the final audit entry runs inside one
unit_of_work(). Any failure rolls the whole unit back: no transaction row
without its balance credit, no credit without its audit entry. Rejections
are final; callers retry, if at all, with a brand-new request.

LOCKING:
- The member row is locked first. The 30-second duplicate check, the fraud
  history reads and the insert for one member therefore never interleave
  with another request for the same member.
- The balance row is locked immediately before its read-modify-write.
- On SQLite the engine opens every transaction with BEGIN IMMEDIATE, which
  serializes writers database-wide instead.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any

from ..context import RequestContext
from ..extensions import db
from ..models import Category, EntityKind, FraudRiskScore, Member, Transaction
from ..validation import ConflictError, FraudBlockError, NotFoundError, ValidationError, parse_decimal
from . import audit_service, fraud_service, member_service, points_service, qr_service
from .concurrency import lock_for_update, unit_of_work
from .fraud_service import DEFAULT_POLICY, FraudContext, FraudPolicy, RiskLevel
from loyalty.time_utils import Clock, SYSTEM_CLOCK

logger = logging.getLogger(__name__)


DUPLICATE_WINDOW = timedelta(seconds=30)
MAX_NOTES_LENGTH = 255


@dataclass(frozen=True)
class TransactionRequest:
    member_id: int
    category_id: int
    action: str
    amount: Decimal
    notes: str | None = None
    created_by: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransactionRequest":
        missing = [f for f in ("member_id", "category_id", "action", "amount") if data.get(f) is None]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        return cls(
            member_id=_require_int(data["member_id"], "member_id"),
            category_id=_require_int(data["category_id"], "category_id"),
            action=str(data["action"]).strip(),
            amount=parse_decimal(data["amount"], "amount"),
            notes=data.get("notes"),
            created_by=data.get("created_by"),
        )


def _require_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    return value


def _validate_request(data: TransactionRequest) -> None:
    if not data.action:
        raise ValidationError("action is required")
    if Decimal(data.amount) < 0:
        raise ValidationError("amount must be >= 0")
    if data.notes is not None and len(data.notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"notes exceeds max length {MAX_NOTES_LENGTH}")


def generate_reference_number() -> str:
    return f"TRX-{uuid.uuid4().hex[:16].upper()}"


def _is_duplicate(member_id: int, category_id: int, amount: Decimal, now) -> bool:
    return db.session.query(
        db.session.query(Transaction.id).filter(
            Transaction.member_id == member_id,
            Transaction.category_id == category_id,
            Transaction.amount == amount,
            Transaction.created_at >= now - DUPLICATE_WINDOW,
        ).exists()
    ).scalar()


def apply_risk_delta(member_id: int, delta: int, *, clock: Clock = SYSTEM_CLOCK) -> FraudRiskScore | None:
    """
    Add delta to the member's cumulative risk score (created at 0 if absent).

    The model clamps the result to [0, 100]. A zero delta changes nothing,
    not even last_evaluated_at.
    """
    if delta == 0:
        return None

    now = clock.now()
    score = lock_for_update(
        db.session.query(FraudRiskScore).filter_by(member_id=member_id)
    ).first()
    if not score:
        score = FraudRiskScore(member_id=member_id, risk_score=0)
        db.session.add(score)

    score.risk_score = (score.risk_score or 0) + delta
    score.last_evaluated_at = now
    db.session.flush()
    return score


def process_transaction(
    data: TransactionRequest,
    ctx: RequestContext,
    *,
    clock: Clock = SYSTEM_CLOCK,
    policy: FraudPolicy = DEFAULT_POLICY,
) -> Transaction:
    """
    Credit points for one earning event.

    Raises:
        ValidationError: bad amount/action/notes
        NotFoundError: MEMBER_NOT_FOUND, CATEGORY_NOT_FOUND
        ConflictError: DUPLICATE_TRANSACTION
        FraudBlockError: HIGH risk verdict
    """
    _validate_request(data)
    amount = Decimal(data.amount)
    staff_id = data.created_by if data.created_by is not None else ctx.actor_id

    with unit_of_work():
        now = clock.now()

        # 1. Resolve member (locked; serializes this member's pipeline runs)
        member = lock_for_update(db.session.query(Member).filter_by(id=data.member_id)).first()
        if not member:
            raise NotFoundError(f"Member {data.member_id} not found", code="MEMBER_NOT_FOUND")

        if not db.session.query(Category.id).filter_by(id=data.category_id).first():
            raise NotFoundError(f"Category {data.category_id} not found", code="CATEGORY_NOT_FOUND")

        # 2. Duplicate guard: same member, amount and category within 30 seconds
        if _is_duplicate(member.id, data.category_id, amount, now):
            raise ConflictError(
                "Duplicate transaction detected. Please wait.",
                code="DUPLICATE_TRANSACTION",
            )

        # 3. Candidate points (also the fraud engine's high-value signal)
        points = points_service.calculate_points(member.id, data.category_id, data.action, amount)

        # 4. Fraud evaluation, always audited
        fraud_ctx = FraudContext(amount=amount, points=points, staff_id=staff_id, timestamp=now)
        evaluation = fraud_service.evaluate(member.id, fraud_ctx, policy=policy, clock=clock)
        member_subject = audit_service.subject(EntityKind.MEMBER, member.id)

        audit_service.append_audit_entry(
            audit_service.FRAUD_EVALUATION,
            ctx=ctx,
            subject=member_subject,
            payload={**evaluation.to_dict(), "context": fraud_ctx.to_dict()},
            occurred_at=now,
        )

        # 5. Cumulative risk score
        apply_risk_delta(member.id, evaluation.score_delta, clock=clock)

        # 6. Risk gate
        notes = (data.notes or "").strip()
        if evaluation.risk_level is RiskLevel.HIGH:
            audit_service.append_audit_entry(
                audit_service.FRAUD_BLOCK,
                ctx=ctx,
                subject=member_subject,
                payload={
                    "risk_level": evaluation.risk_level.value,
                    "reasons": evaluation.reasons,
                    "transaction_attempt": {
                        "member_id": data.member_id,
                        "category_id": data.category_id,
                        "action": data.action,
                        "amount": amount,
                        "created_by": staff_id,
                    },
                },
                occurred_at=now,
            )
            logger.warning(
                "Blocked transaction for member %s: %s", member.id, "; ".join(evaluation.reasons)
            )
            raise FraudBlockError(
                "Transaction blocked due to high fraud risk: " + ", ".join(evaluation.reasons),
                reasons=evaluation.reasons,
            )

        if evaluation.risk_level is RiskLevel.MEDIUM:
            notes = f"{notes} [RISK FLAG: MEDIUM - {', '.join(evaluation.reasons)}]".strip()
            audit_service.append_audit_entry(
                audit_service.TRANSACTION_FLAGGED,
                ctx=ctx,
                subject=member_subject,
                payload={"risk_level": evaluation.risk_level.value, "reasons": evaluation.reasons},
                occurred_at=now,
            )
            logger.warning(
                "Flagged transaction for member %s: %s", member.id, "; ".join(evaluation.reasons)
            )

        # 7. Transaction record
        transaction = Transaction(
            member_id=member.id,
            category_id=data.category_id,
            action=data.action,
            amount=amount,
            points_earned=points,
            reference_no=generate_reference_number(),
            notes=notes or None,
            created_by=staff_id,
            created_at=now,
        )
        db.session.add(transaction)
        db.session.flush()

        # 8. Credit the balance under lock
        balance = member_service.lock_balance(member.id)
        balance.balance = points_service.quantize_points(Decimal(balance.balance) + points)
        db.session.flush()

        # 9. Audit trail
        audit_service.append_audit_entry(
            audit_service.TRANSACTION_CREATED,
            ctx=ctx,
            subject=audit_service.subject(EntityKind.TRANSACTION, transaction.id),
            payload={
                "amount": amount,
                "points": points,
                "new_balance": balance.balance,
                "risk_level": evaluation.risk_level.value,
            },
            occurred_at=now,
        )

    return transaction


def process_scan(
    qr_payload: Any,
    *,
    category_id: int,
    action: str,
    amount: Any,
    notes: str | None,
    ctx: RequestContext,
    secret: str,
    clock: Clock = SYSTEM_CLOCK,
    policy: FraudPolicy = DEFAULT_POLICY,
) -> Transaction:
    """
    Verify a member's QR payload and credit the scanned transaction.

    Raises SecurityError (code = QR failure code) before touching the
    database when the payload does not verify.
    """
    member_code = qr_service.verify_payload(qr_payload, secret=secret, clock=clock).raise_for_error()

    member = member_service.get_member_by_code(member_code)
    if not member.is_active:
        raise ConflictError("Member is not active", code="MEMBER_INACTIVE")

    request = TransactionRequest.from_dict({
        "member_id": member.id,
        "category_id": category_id,
        "action": action,
        "amount": amount,
        "notes": notes,
        "created_by": ctx.actor_id,
    })
    return process_transaction(request, ctx, clock=clock, policy=policy)
