# Overview: Flask API routes for categories and point rules; parses input and returns JSON responses.

# backend/loyalty/routes/catalog.py
"""
Earning Configuration API Routes

Categories classify transactions; point rules turn a (category, action)
and an amount into points. Staff read them at the counter, admins change
them. Every change is audited.
"""

from flask import Blueprint, request, jsonify, current_app

from ..context import RequestContext
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_STAFF
from ..services import catalog_service
from ..validation import LoyaltyError


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/v1")


# =============================================================================
# CATEGORIES
# =============================================================================

@catalog_bp.get("/categories")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def list_categories_route():
    try:
        include_inactive = request.args.get("include_inactive", "false").lower() == "true"
        categories = catalog_service.list_categories(include_inactive=include_inactive)
        return jsonify({"categories": [c.to_dict() for c in categories]}), 200
    except Exception:
        current_app.logger.exception("Failed to list categories")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.post("/categories")
@require_auth
@require_role(ROLE_ADMIN)
def create_category_route():
    try:
        category = catalog_service.create_category(request.get_json(silent=True), RequestContext.from_request())
        return jsonify({"category": category.to_dict()}), 201
    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# POINT RULES
# =============================================================================

@catalog_bp.get("/point-rules")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def list_point_rules_route():
    """Optional ?category_id=1&action=PURCHASE."""
    try:
        rules = catalog_service.list_point_rules(
            category_id=request.args.get("category_id", type=int),
            action=request.args.get("action"),
        )
        return jsonify({"point_rules": [r.to_dict() for r in rules]}), 200
    except Exception:
        current_app.logger.exception("Failed to list point rules")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.post("/point-rules")
@require_auth
@require_role(ROLE_ADMIN)
def create_point_rule_route():
    """
    Request body:
    {
        "category_id": 1,
        "action": "PURCHASE",
        "rule_type": "multiplier",   (fixed | multiplier)
        "value": "10",
        "min_amount": "100.00",      (optional)
        "max_points": "500.00"       (optional)
    }
    """
    try:
        rule = catalog_service.create_point_rule(request.get_json(silent=True), RequestContext.from_request())
        return jsonify({"point_rule": rule.to_dict()}), 201
    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create point rule")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.patch("/point-rules/<int:rule_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_point_rule_route(rule_id: int):
    try:
        rule = catalog_service.update_point_rule(rule_id, request.get_json(silent=True), RequestContext.from_request())
        return jsonify({"point_rule": rule.to_dict()}), 200
    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update point rule")
        return jsonify({"error": "Internal server error"}), 500
