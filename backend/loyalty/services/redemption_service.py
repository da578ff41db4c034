# Overview: Atomic reward redemption and staff completion.

"""
Reward Redemption Pipeline

WHY: Stock and balance are the two contended resources. Both rows are read
under an exclusive lock immediately before their read-modify-write and held
until commit, so two concurrent redemptions of the same reward serialize and
the second observes the first's decrement.

Lock order is always Reward, then LoyaltyBalance.
"""

from __future__ import annotations

from decimal import Decimal

from ..context import RequestContext
from ..extensions import db
from ..models import EntityKind, Redemption, Reward
from ..models.activity import REDEMPTION_STATUS_COMPLETED, REDEMPTION_STATUS_PENDING, REDEMPTION_STATUSES
from ..validation import ConflictError, NotFoundError, ValidationError
from . import audit_service, member_service
from .concurrency import lock_for_update, unit_of_work
from loyalty.time_utils import Clock, SYSTEM_CLOCK


def redeem(member_id: int, reward_id: int, ctx: RequestContext, *, clock: Clock = SYSTEM_CLOCK) -> Redemption:
    """
    Spend points on one unit of a reward.

    Raises:
        NotFoundError: MEMBER_NOT_FOUND, REWARD_NOT_FOUND
        ConflictError: REWARD_INACTIVE, OUT_OF_STOCK, INSUFFICIENT_BALANCE
    """
    with unit_of_work():
        now = clock.now()
        member = member_service.get_member(member_id)

        # 1. Lock reward
        reward = lock_for_update(db.session.query(Reward).filter_by(id=reward_id)).populate_existing().first()
        if not reward:
            raise NotFoundError(f"Reward {reward_id} not found", code="REWARD_NOT_FOUND")
        if not reward.is_active:
            raise ConflictError("Reward is no longer active", code="REWARD_INACTIVE")
        if reward.stock <= 0:
            raise ConflictError("Reward is out of stock", code="OUT_OF_STOCK")

        # 2. Lock balance (created at 0 if missing)
        balance = member_service.lock_balance(member.id)
        cost = Decimal(reward.points_required)
        if Decimal(balance.balance) < cost:
            raise ConflictError("Insufficient points balance", code="INSUFFICIENT_BALANCE")

        # 3. Deduct
        balance.balance = Decimal(balance.balance) - cost
        reward.stock = reward.stock - 1

        # 4. Redemption record
        redemption = Redemption(
            reward_id=reward.id,
            member_id=member.id,
            points_used=cost,
            status=REDEMPTION_STATUS_PENDING,
            processed_by=None,
            created_at=now,
        )
        db.session.add(redemption)
        db.session.flush()

        # 5. Audit
        audit_service.append_audit_entry(
            audit_service.REDEMPTION_REQUEST,
            ctx=ctx,
            subject=audit_service.subject(EntityKind.REDEMPTION, redemption.id),
            payload={
                "reward_name": reward.name,
                "points_cost": cost,
                "new_balance": balance.balance,
            },
            occurred_at=now,
        )

    return redemption


def complete_redemption(redemption_id: int, ctx: RequestContext, *, clock: Clock = SYSTEM_CLOCK) -> Redemption:
    """
    Mark a redemption as handed over (pending -> completed).

    Raises ConflictError(ALREADY_COMPLETED) when it was completed before.
    """
    with unit_of_work():
        redemption = lock_for_update(
            db.session.query(Redemption).filter_by(id=redemption_id)
        ).populate_existing().first()
        if not redemption:
            raise NotFoundError(f"Redemption {redemption_id} not found", code="REDEMPTION_NOT_FOUND")
        if redemption.status == REDEMPTION_STATUS_COMPLETED:
            raise ConflictError("Redemption is already completed", code="ALREADY_COMPLETED")

        now = clock.now()
        redemption.status = REDEMPTION_STATUS_COMPLETED
        redemption.processed_by = ctx.actor_id
        redemption.processed_at = now
        db.session.flush()

        audit_service.append_audit_entry(
            audit_service.REDEMPTION_COMPLETED,
            ctx=ctx,
            subject=audit_service.subject(EntityKind.REDEMPTION, redemption.id),
            payload={
                "reward_name": redemption.reward.name,
                "member_name": redemption.member.name,
            },
            occurred_at=now,
        )

    return redemption


def list_redemptions(*, member_id: int | None = None, status: str | None = None, limit: int = 50) -> list[Redemption]:
    """Newest first. member_id restricts to one member (member users see only their own)."""
    if status is not None and status not in REDEMPTION_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(REDEMPTION_STATUSES)}")
    q = db.session.query(Redemption)
    if member_id is not None:
        q = q.filter_by(member_id=member_id)
    if status:
        q = q.filter_by(status=status)
    limit = max(1, min(limit, 200))
    return q.order_by(Redemption.id.desc()).limit(limit).all()


def get_redemption(redemption_id: int) -> Redemption:
    redemption = db.session.query(Redemption).filter_by(id=redemption_id).first()
    if not redemption:
        raise NotFoundError(f"Redemption {redemption_id} not found", code="REDEMPTION_NOT_FOUND")
    return redemption
