# Overview: Flask API routes for member operations; parses input and returns JSON responses.

# backend/loyalty/routes/members.py
"""
Member API Routes

- Staff/admin create and look up members
- Members may read only their own profile, points and history
"""

from flask import Blueprint, request, jsonify, current_app

from ..context import RequestContext
from ..decorators import require_auth, require_role, can_access_member
from ..models.auth import ROLE_ADMIN, ROLE_STAFF
from ..services import member_service
from ..validation import LoyaltyError


members_bp = Blueprint("members", __name__, url_prefix="/api/v1/members")


@members_bp.post("")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def create_member_route():
    """
    Create a member and its zero balance.

    Request body:
    {
        "name": "Juan Dela Cruz",
        "member_code": "BMPC-000123",  (optional, generated when omitted)
        "email": "...", "phone": "...", "branch": "..."  (optional)
    }
    """
    try:
        member = member_service.create_member(request.get_json(silent=True), RequestContext.from_request())
        return jsonify({"member": member.to_dict()}), 201
    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create member")
        return jsonify({"error": "Internal server error"}), 500


@members_bp.get("/lookup")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def lookup_member_route():
    """Find a member by code (?code=BMPC-000123)."""
    try:
        code = (request.args.get("code") or "").strip()
        if not code:
            return jsonify({"error": "code query parameter required"}), 400
        member = member_service.get_member_by_code(code)
        return jsonify({"member": member.to_dict()}), 200
    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to look up member")
        return jsonify({"error": "Internal server error"}), 500


@members_bp.get("/<int:member_id>")
@require_auth
def get_member_route(member_id: int):
    try:
        if not can_access_member(member_id):
            return jsonify({"error": "Permission denied"}), 403
        member = member_service.get_member(member_id)
        return jsonify({"member": member.to_dict()}), 200
    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get member")
        return jsonify({"error": "Internal server error"}), 500


@members_bp.get("/<int:member_id>/points")
@require_auth
def get_points_route(member_id: int):
    """Current balance (a zero balance row is created on first access)."""
    try:
        if not can_access_member(member_id):
            return jsonify({"error": "Permission denied"}), 403
        balance = member_service.get_balance(member_id)
        return jsonify({"member_id": member_id, "balance": str(balance.balance)}), 200
    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get member points")
        return jsonify({"error": "Internal server error"}), 500


@members_bp.get("/<int:member_id>/transactions")
@require_auth
def list_transactions_route(member_id: int):
    """Transaction history, newest first (?limit=50)."""
    try:
        if not can_access_member(member_id):
            return jsonify({"error": "Permission denied"}), 403
        limit = request.args.get("limit", 50, type=int)
        transactions = member_service.list_member_transactions(member_id, limit=limit)
        return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200
    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list member transactions")
        return jsonify({"error": "Internal server error"}), 500
