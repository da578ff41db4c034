# Overview: Admin management of categories, point rules and the reward catalog.

from __future__ import annotations

import re

from ..context import RequestContext
from ..extensions import db
from ..models import Category, EntityKind, PointRule, Reward
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    enforce_rules_point_rule,
    enforce_rules_reward,
    validate_payload,
)
from . import audit_service
from .concurrency import lock_for_update, unit_of_work


CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "slug", "description", "is_active"},
    required_on_create={"name"},
)

POINT_RULE_POLICY = ModelValidationPolicy(
    writable_fields={"category_id", "action", "rule_type", "value", "min_amount", "max_points", "is_active"},
    required_on_create={"category_id", "action", "rule_type", "value"},
)

REWARD_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "points_required", "stock", "is_active"},
    required_on_create={"name", "points_required"},
)


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


# =============================================================================
# Categories
# =============================================================================

def create_category(data: dict, ctx: RequestContext) -> Category:
    patch = validate_payload(model=Category, payload=data, policy=CATEGORY_POLICY, partial=False)
    patch["slug"] = patch.get("slug") or slugify(patch["name"])

    with unit_of_work():
        if db.session.query(Category.id).filter_by(slug=patch["slug"]).first():
            raise ConflictError(f"Category slug {patch['slug']} already exists", code="DUPLICATE_CATEGORY")

        category = Category(**patch)
        db.session.add(category)
        db.session.flush()

        audit_service.append_audit_entry(
            audit_service.CATEGORY_CREATED,
            ctx=ctx,
            subject=audit_service.subject(EntityKind.CATEGORY, category.id),
            payload={"name": category.name, "slug": category.slug},
        )

    return category


def list_categories(include_inactive: bool = False) -> list[Category]:
    q = db.session.query(Category)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(Category.name).all()


def get_category(category_id: int) -> Category:
    category = db.session.query(Category).filter_by(id=category_id).first()
    if not category:
        raise NotFoundError(f"Category {category_id} not found", code="CATEGORY_NOT_FOUND")
    return category


# =============================================================================
# Point rules
# =============================================================================

def create_point_rule(data: dict, ctx: RequestContext) -> PointRule:
    patch = validate_payload(model=PointRule, payload=data, policy=POINT_RULE_POLICY, partial=False)
    enforce_rules_point_rule(patch)

    with unit_of_work():
        get_category(patch["category_id"])

        rule = PointRule(**patch)
        db.session.add(rule)
        db.session.flush()

        audit_service.append_audit_entry(
            audit_service.POINT_RULE_CREATED,
            ctx=ctx,
            subject=audit_service.subject(EntityKind.POINT_RULE, rule.id),
            payload=rule.to_dict(),
        )

    return rule


def update_point_rule(rule_id: int, data: dict, ctx: RequestContext) -> PointRule:
    patch = validate_payload(model=PointRule, payload=data, policy=POINT_RULE_POLICY, partial=True)
    enforce_rules_point_rule(patch)

    with unit_of_work():
        rule = db.session.query(PointRule).filter_by(id=rule_id).first()
        if not rule:
            raise NotFoundError(f"Point rule {rule_id} not found", code="POINT_RULE_NOT_FOUND")
        if "category_id" in patch:
            get_category(patch["category_id"])

        for key, value in patch.items():
            setattr(rule, key, value)
        db.session.flush()

        audit_service.append_audit_entry(
            audit_service.POINT_RULE_UPDATED,
            ctx=ctx,
            subject=audit_service.subject(EntityKind.POINT_RULE, rule.id),
            payload={"changes": patch},
        )

    return rule


def list_point_rules(category_id: int | None = None, action: str | None = None) -> list[PointRule]:
    q = db.session.query(PointRule)
    if category_id is not None:
        q = q.filter_by(category_id=category_id)
    if action:
        q = q.filter_by(action=action)
    return q.order_by(PointRule.id).all()


# =============================================================================
# Rewards
# =============================================================================

def get_reward(reward_id: int) -> Reward:
    reward = db.session.query(Reward).filter_by(id=reward_id).first()
    if not reward:
        raise NotFoundError(f"Reward {reward_id} not found", code="REWARD_NOT_FOUND")
    return reward


def list_catalog(search: str | None = None) -> list[Reward]:
    """Redeemable rewards: active and in stock, optionally filtered by name/description."""
    q = db.session.query(Reward).filter(Reward.is_active.is_(True), Reward.stock > 0)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(db.or_(Reward.name.ilike(pattern), Reward.description.ilike(pattern)))
    return q.order_by(Reward.points_required, Reward.id).all()


def create_reward(data: dict, ctx: RequestContext) -> Reward:
    patch = validate_payload(model=Reward, payload=data, policy=REWARD_POLICY, partial=False)
    enforce_rules_reward(patch)

    with unit_of_work():
        reward = Reward(**patch)
        db.session.add(reward)
        db.session.flush()

        audit_service.append_audit_entry(
            audit_service.REWARD_CREATED,
            ctx=ctx,
            subject=audit_service.subject(EntityKind.REWARD, reward.id),
            payload={"name": reward.name, "points_required": reward.points_required, "stock": reward.stock},
        )

    return reward


def update_reward(reward_id: int, data: dict, ctx: RequestContext) -> Reward:
    patch = validate_payload(model=Reward, payload=data, policy=REWARD_POLICY, partial=True)
    enforce_rules_reward(patch)

    with unit_of_work():
        reward = lock_for_update(db.session.query(Reward).filter_by(id=reward_id)).populate_existing().first()
        if not reward:
            raise NotFoundError(f"Reward {reward_id} not found", code="REWARD_NOT_FOUND")

        for key, value in patch.items():
            setattr(reward, key, value)
        db.session.flush()

        audit_service.append_audit_entry(
            audit_service.REWARD_UPDATED,
            ctx=ctx,
            subject=audit_service.subject(EntityKind.REWARD, reward.id),
            payload={"changes": patch},
        )

    return reward


def delete_reward(reward_id: int, ctx: RequestContext) -> str:
    """
    Remove a reward from the catalog.

    Rewards referenced by redemptions are deactivated, not deleted, so the
    redemption history keeps its foreign key. Returns "deactivated" or
    "deleted".
    """
    with unit_of_work():
        reward = lock_for_update(db.session.query(Reward).filter_by(id=reward_id)).populate_existing().first()
        if not reward:
            raise NotFoundError(f"Reward {reward_id} not found", code="REWARD_NOT_FOUND")

        reward_subject = audit_service.subject(EntityKind.REWARD, reward.id)
        if reward.redemptions.count() > 0:
            reward.is_active = False
            db.session.flush()
            audit_service.append_audit_entry(
                audit_service.REWARD_DEACTIVATED,
                ctx=ctx,
                subject=reward_subject,
                payload={"name": reward.name, "reason": "Has redemption history"},
            )
            return "deactivated"

        audit_service.append_audit_entry(
            audit_service.REWARD_DELETED,
            ctx=ctx,
            subject=reward_subject,
            payload={"name": reward.name},
        )
        db.session.delete(reward)

    return "deleted"
