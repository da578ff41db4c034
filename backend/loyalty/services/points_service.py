# Overview: Rule-based point calculation for a transaction.

"""
Points Rule Engine

Strategy:
- Fetch every ACTIVE rule for (category_id, action).
- Skip rules whose min_amount is above the transaction amount.
- Compute base points with the calculator for the rule's kind.
- Cap at max_points when set.
- Sum across all matching rules (rules stack; promotions add on top of the
  base rule rather than replacing it).

Deterministic: same inputs and same rule set always give the same result.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Callable, Iterable

from ..extensions import db
from ..models import PointRule, RuleKind


ZERO = Decimal("0")
TWO_PLACES = Decimal("0.01")


def _fixed_points(value: Decimal, amount: Decimal) -> Decimal:
    return value


def _multiplier_points(value: Decimal, amount: Decimal) -> Decimal:
    # value is the divisor: 1 point per `value` currency units
    if value <= 0:
        return ZERO
    return (amount / value).to_integral_value(rounding=ROUND_FLOOR)


CALCULATORS: dict[RuleKind, Callable[[Decimal, Decimal], Decimal]] = {
    RuleKind.FIXED: _fixed_points,
    RuleKind.MULTIPLIER: _multiplier_points,
}


def quantize_points(points: Decimal) -> Decimal:
    return Decimal(points).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def points_for_rule(rule: PointRule, amount: Decimal) -> Decimal:
    """Points a single rule contributes for amount (0 when it does not apply)."""
    if rule.min_amount is not None and amount < Decimal(rule.min_amount):
        return ZERO

    points = CALCULATORS[rule.kind](Decimal(rule.value), amount)

    if rule.max_points is not None and points > Decimal(rule.max_points):
        points = Decimal(rule.max_points)

    return points


def sum_rule_points(rules: Iterable[PointRule], amount: Decimal) -> Decimal:
    total = ZERO
    for rule in rules:
        total += points_for_rule(rule, amount)
    return quantize_points(total)


def get_active_rules(category_id: int, action: str) -> list[PointRule]:
    return (
        db.session.query(PointRule)
        .filter_by(category_id=category_id, action=action, is_active=True)
        .order_by(PointRule.id)
        .all()
    )


def calculate_points(member_id: int, category_id: int, action: str, amount: Decimal) -> Decimal:
    """
    Points earned by member_id for a transaction.

    member_id is accepted for tier-based rules; no current rule kind uses it.
    Returns a non-negative Decimal rounded to 2 places.
    """
    rules = get_active_rules(category_id, action)
    if not rules:
        return quantize_points(ZERO)
    return sum_rule_points(rules, Decimal(amount))
