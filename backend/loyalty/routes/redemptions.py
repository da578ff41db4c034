# Overview: Flask API routes for redemptions; parses input and returns JSON responses.

# backend/loyalty/routes/redemptions.py
"""
Redemption API Routes

- POST  /redemptions       : spend points on a reward (member for self, staff on behalf)
- GET   /redemptions       : members see their own, staff/admin see all
- PATCH /redemptions/<id>  : staff mark a redemption completed
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..context import RequestContext
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_MEMBER, ROLE_STAFF
from ..models.activity import REDEMPTION_STATUS_COMPLETED
from ..services import redemption_service
from ..validation import LoyaltyError


redemptions_bp = Blueprint("redemptions", __name__, url_prefix="/api/v1/redemptions")


@redemptions_bp.post("")
@require_auth
def create_redemption_route():
    """
    Redeem one unit of a reward.

    Request body:
    {
        "reward_id": 3,
        "member_id": 7  (staff/admin only; members always redeem for themselves)
    }

    Returns:
        201: Redemption created (pending), with the new balance
        404: Reward or member not found
        409: Inactive reward, out of stock, insufficient balance
    """
    try:
        data = request.get_json(silent=True) or {}
        user = g.current_user

        reward_id = data.get("reward_id")
        if reward_id is None:
            return jsonify({"error": "reward_id required"}), 400

        if user.role == ROLE_MEMBER:
            if user.member_id is None:
                return jsonify({"error": "No member profile linked to this account"}), 403
            member_id = user.member_id
        else:
            member_id = data.get("member_id")
            if member_id is None:
                return jsonify({"error": "member_id required"}), 400

        if not isinstance(reward_id, int) or not isinstance(member_id, int):
            return jsonify({"error": "reward_id and member_id must be integers"}), 400

        redemption = redemption_service.redeem(member_id, reward_id, RequestContext.from_request())

        return jsonify({
            "redemption": redemption.to_dict(),
            "balance": str(redemption.member.balance.balance),
        }), 201

    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to redeem reward")
        return jsonify({"error": "Internal server error"}), 500


@redemptions_bp.get("")
@require_auth
def list_redemptions_route():
    """Optional ?status=pending and (staff/admin) ?member_id=7."""
    try:
        user = g.current_user
        if user.role == ROLE_MEMBER:
            member_id = user.member_id
            if member_id is None:
                return jsonify({"redemptions": []}), 200
        else:
            member_id = request.args.get("member_id", type=int)

        redemptions = redemption_service.list_redemptions(
            member_id=member_id,
            status=request.args.get("status"),
            limit=request.args.get("limit", 50, type=int),
        )
        return jsonify({"redemptions": [r.to_dict() for r in redemptions]}), 200

    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list redemptions")
        return jsonify({"error": "Internal server error"}), 500


@redemptions_bp.patch("/<int:redemption_id>")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def update_redemption_route(redemption_id: int):
    """
    Request body: {"status": "completed"}

    completed is the only transition staff can make.
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("status") != REDEMPTION_STATUS_COMPLETED:
            return jsonify({"error": f"status must be '{REDEMPTION_STATUS_COMPLETED}'"}), 400

        redemption = redemption_service.complete_redemption(redemption_id, RequestContext.from_request())
        return jsonify({"redemption": redemption.to_dict()}), 200

    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update redemption")
        return jsonify({"error": "Internal server error"}), 500
