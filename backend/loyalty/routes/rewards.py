# Overview: Flask API routes for the reward catalog; parses input and returns JSON responses.

# backend/loyalty/routes/rewards.py
"""
Reward Catalog API Routes

- Any authenticated user browses the catalog (active, in stock)
- Admins create, update and delete rewards
- Deleting a reward with redemption history deactivates it instead
"""

from flask import Blueprint, request, jsonify, current_app

from ..context import RequestContext
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import catalog_service
from ..validation import LoyaltyError


rewards_bp = Blueprint("rewards", __name__, url_prefix="/api/v1/rewards")


@rewards_bp.get("")
@require_auth
def list_rewards_route():
    """Redeemable rewards (?search=mug)."""
    try:
        rewards = catalog_service.list_catalog(search=request.args.get("search"))
        return jsonify({"rewards": [r.to_dict() for r in rewards]}), 200
    except Exception:
        current_app.logger.exception("Failed to list rewards")
        return jsonify({"error": "Internal server error"}), 500


@rewards_bp.get("/<int:reward_id>")
@require_auth
def get_reward_route(reward_id: int):
    try:
        reward = catalog_service.get_reward(reward_id)
        return jsonify({"reward": reward.to_dict()}), 200
    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get reward")
        return jsonify({"error": "Internal server error"}), 500


@rewards_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_reward_route():
    """
    Request body:
    {
        "name": "Tumbler",
        "points_required": "50.00",
        "stock": 100,
        "description": "..."  (optional)
    }
    """
    try:
        reward = catalog_service.create_reward(request.get_json(silent=True), RequestContext.from_request())
        return jsonify({"reward": reward.to_dict()}), 201
    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create reward")
        return jsonify({"error": "Internal server error"}), 500


@rewards_bp.patch("/<int:reward_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_reward_route(reward_id: int):
    try:
        reward = catalog_service.update_reward(reward_id, request.get_json(silent=True), RequestContext.from_request())
        return jsonify({"reward": reward.to_dict()}), 200
    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update reward")
        return jsonify({"error": "Internal server error"}), 500


@rewards_bp.delete("/<int:reward_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_reward_route(reward_id: int):
    try:
        outcome = catalog_service.delete_reward(reward_id, RequestContext.from_request())
        message = "Reward deactivated (has redemption history)" if outcome == "deactivated" else "Reward deleted"
        return jsonify({"result": outcome, "message": message}), 200
    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete reward")
        return jsonify({"error": "Internal server error"}), 500
