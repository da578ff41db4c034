# Overview: Behavioral fraud signals and per-evaluation risk verdicts.

"""
Fraud Scoring Engine

Signals are evaluated independently and their scores summed:

- Velocity:       >= 3 scans for the member in the last 5 minutes         (+20)
- High value:     points for this transaction > 500                       (+15)
- Time of day:    local hour >= 23 or < 5                                 (+10)
- Staff pairing:  >= 5 scans member+staff in the last 24 hours            (+25)

Window counts include the scan being evaluated, so the third scan inside
five minutes is the first to trip the velocity signal.

The risk level is derived from THIS evaluation's delta only:
>= 50 HIGH, >= 20 MEDIUM, else LOW. The member's cumulative FraudRiskScore is
maintained by the transaction pipeline, not here. This module only reads
transaction history; it writes nothing.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from ..extensions import db
from ..models import Transaction
from loyalty.time_utils import Clock, SYSTEM_CLOCK


class RiskLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class FraudPolicy:
    velocity_window: timedelta = timedelta(minutes=5)
    velocity_threshold: int = 3
    velocity_score: int = 20

    high_points_threshold: Decimal = Decimal("500")
    high_points_score: int = 15

    late_night_start_hour: int = 23
    late_night_end_hour: int = 5
    late_night_score: int = 10
    timezone: str = "UTC"

    staff_pairing_window: timedelta = timedelta(hours=24)
    staff_pairing_threshold: int = 5
    staff_pairing_score: int = 25

    medium_threshold: int = 20
    high_threshold: int = 50

    @classmethod
    def from_config(cls, config) -> "FraudPolicy":
        return cls(timezone=config.get("FRAUD_TIMEZONE") or "UTC")


DEFAULT_POLICY = FraudPolicy()


@dataclass(frozen=True)
class FraudContext:
    amount: Decimal
    points: Decimal
    staff_id: int | None
    timestamp: datetime  # naive UTC

    def to_dict(self) -> dict:
        return {
            "amount": str(self.amount),
            "points": str(self.points),
            "staff_id": self.staff_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class FraudEvaluation:
    score_delta: int
    risk_level: RiskLevel
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "score_delta": self.score_delta,
            "risk_level": self.risk_level.value,
            "reasons": list(self.reasons),
        }


def determine_risk_level(score: int, policy: FraudPolicy = DEFAULT_POLICY) -> RiskLevel:
    if score >= policy.high_threshold:
        return RiskLevel.HIGH
    if score >= policy.medium_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def local_hour(timestamp: datetime, tz_name: str) -> int:
    aware = timestamp if timestamp.tzinfo else timestamp.replace(tzinfo=timezone.utc)
    zone = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)
    return aware.astimezone(zone).hour


def _count_with_current(member_id: int, since: datetime, staff_id: int | None = None) -> int:
    """Committed transactions since `since`, plus the one being evaluated."""
    q = db.session.query(Transaction).filter(
        Transaction.member_id == member_id,
        Transaction.created_at >= since,
    )
    if staff_id is not None:
        q = q.filter(Transaction.created_by == staff_id)
    return q.count() + 1


def evaluate(
    member_id: int,
    context: FraudContext,
    *,
    policy: FraudPolicy = DEFAULT_POLICY,
    clock: Clock = SYSTEM_CLOCK,
) -> FraudEvaluation:
    """Score one prospective transaction for member_id."""
    now = clock.now()
    score_delta = 0
    reasons: list[str] = []

    # 1. Velocity (rapid repeated scans)
    recent = _count_with_current(member_id, now - policy.velocity_window)
    if recent >= policy.velocity_threshold:
        score_delta += policy.velocity_score
        minutes = int(policy.velocity_window.total_seconds() // 60)
        reasons.append(f"High velocity: {recent} scans in last {minutes} mins")

    # 2. High points
    if Decimal(context.points) > policy.high_points_threshold:
        score_delta += policy.high_points_score
        reasons.append(f"High value transaction: {context.points} points")

    # 3. Time of day
    hour = local_hour(context.timestamp, policy.timezone)
    if hour >= policy.late_night_start_hour or hour < policy.late_night_end_hour:
        score_delta += policy.late_night_score
        reasons.append(f"Late night activity (Hour: {hour})")

    # 4. Staff-member pairing
    if context.staff_id is not None:
        paired = _count_with_current(member_id, now - policy.staff_pairing_window, staff_id=context.staff_id)
        if paired >= policy.staff_pairing_threshold:
            score_delta += policy.staff_pairing_score
            reasons.append(
                f"Unusual staff pairing frequency ({paired} times with Staff ID {context.staff_id})"
            )

    return FraudEvaluation(
        score_delta=score_delta,
        risk_level=determine_risk_level(score_delta, policy),
        reasons=reasons,
    )
