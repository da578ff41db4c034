# Overview: Member profiles and their 1:1 loyalty balance rows.

from __future__ import annotations

import secrets

from sqlalchemy.exc import IntegrityError

from ..context import RequestContext
from ..extensions import db
from ..models import EntityKind, LoyaltyBalance, Member, Transaction
from ..models.members import MEMBER_STATUSES
from ..validation import ConflictError, ModelValidationPolicy, NotFoundError, ValidationError, validate_payload
from . import audit_service
from .concurrency import lock_for_update, unit_of_work


MEMBER_POLICY = ModelValidationPolicy(
    writable_fields={"member_code", "name", "email", "phone", "branch", "status"},
    required_on_create={"name"},
)


def generate_member_code() -> str:
    return f"MBR-{secrets.token_hex(4).upper()}"


def get_member(member_id: int) -> Member:
    member = db.session.query(Member).filter_by(id=member_id).first()
    if not member:
        raise NotFoundError(f"Member {member_id} not found", code="MEMBER_NOT_FOUND")
    return member


def get_member_by_code(member_code: str) -> Member:
    member = db.session.query(Member).filter_by(member_code=member_code).first()
    if not member:
        raise NotFoundError("Member not found", code="MEMBER_NOT_FOUND")
    return member


def ensure_balance(member_id: int) -> LoyaltyBalance:
    """
    Return the member's balance row, creating it at 0 if missing.

    Safe to call repeatedly (idempotent). A concurrent creator losing the
    unique-constraint race falls back to the row the winner inserted.
    """
    balance = db.session.query(LoyaltyBalance).filter_by(member_id=member_id).first()
    if balance:
        return balance

    try:
        with db.session.begin_nested():
            balance = LoyaltyBalance(member_id=member_id, balance=0)
            db.session.add(balance)
    except IntegrityError:
        balance = db.session.query(LoyaltyBalance).filter_by(member_id=member_id).one()
    return balance


def lock_balance(member_id: int) -> LoyaltyBalance:
    """Create-if-absent, then re-read the balance row under an exclusive lock."""
    ensure_balance(member_id)
    return lock_for_update(
        db.session.query(LoyaltyBalance).filter_by(member_id=member_id)
    ).populate_existing().one()


def get_balance(member_id: int) -> LoyaltyBalance:
    get_member(member_id)
    balance = ensure_balance(member_id)
    db.session.commit()
    return balance


def create_member(data: dict, ctx: RequestContext) -> Member:
    """Create a member together with its zero balance row and an audit entry."""
    patch = validate_payload(model=Member, payload=data, policy=MEMBER_POLICY, partial=False)
    if patch.get("status") and patch["status"] not in MEMBER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(MEMBER_STATUSES)}")

    patch.setdefault("member_code", None)
    patch["member_code"] = patch["member_code"] or generate_member_code()

    with unit_of_work():
        if db.session.query(Member.id).filter_by(member_code=patch["member_code"]).first():
            raise ConflictError(f"Member code {patch['member_code']} already exists", code="DUPLICATE_MEMBER_CODE")

        member = Member(**patch)
        db.session.add(member)
        db.session.flush()

        db.session.add(LoyaltyBalance(member_id=member.id, balance=0))

        audit_service.append_audit_entry(
            audit_service.MEMBER_CREATED,
            ctx=ctx,
            subject=audit_service.subject(EntityKind.MEMBER, member.id),
            payload={"member_code": member.member_code, "name": member.name},
        )

    return member


def list_member_transactions(member_id: int, limit: int = 50) -> list[Transaction]:
    get_member(member_id)
    limit = max(1, min(limit, 200))
    return (
        db.session.query(Transaction)
        .filter_by(member_id=member_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .all()
    )
