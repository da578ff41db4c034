# Overview: Flask API routes for QR issue and scan; parses input and returns JSON responses.

# backend/loyalty/routes/scan.py
"""
QR Scan API Routes

- GET  /members/<id>/qr : signed payload for the member's QR code
- POST /scan            : staff scans a QR code and credits points

The scan runs the full transaction pipeline: verification, duplicate guard,
fraud gate, balance credit and audit, atomically.
"""

from flask import Blueprint, request, jsonify, current_app

from ..context import RequestContext
from ..decorators import require_auth, require_role, can_access_member
from ..models.auth import ROLE_ADMIN, ROLE_STAFF
from ..services import member_service, qr_service, transaction_service
from ..services.fraud_service import FraudPolicy
from ..validation import LoyaltyError


scan_bp = Blueprint("scan", __name__, url_prefix="/api/v1")


@scan_bp.get("/members/<int:member_id>/qr")
@require_auth
def member_qr_route(member_id: int):
    """
    Issue a fresh signed QR payload for a member.

    Member users may only request their own code.

    Returns:
        200: {"qr_data": {...}, "expires_at": <unix seconds>}
        403: Not your member profile
        404: Member not found
    """
    try:
        if not can_access_member(member_id):
            return jsonify({"error": "Permission denied"}), 403

        member = member_service.get_member(member_id)
        payload = qr_service.sign_payload(
            member.member_code,
            current_app.config.get("QR_VALIDITY_SECONDS", qr_service.DEFAULT_VALIDITY_SECONDS),
            secret=qr_service.resolve_secret(current_app.config),
        )
        return jsonify({"qr_data": payload, "expires_at": payload["expires_at"]}), 200

    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to issue member QR")
        return jsonify({"error": "Internal server error"}), 500


@scan_bp.post("/scan")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def scan_route():
    """
    Credit points for a scanned member QR code.

    Request body:
    {
        "qr_data": {"member_id": "...", "issued_at": ..., "expires_at": ..., "checksum": "..."},
        "category_id": 1,
        "action": "PURCHASE",
        "amount": "600.00",
        "notes": "optional"
    }

    Returns:
        201: Transaction created (notes carry a risk flag on MEDIUM risk)
        400: Malformed / tampered / expired QR, invalid input
        404: Member or category not found
        409: Duplicate transaction, inactive member
        422: Blocked for high fraud risk
    """
    try:
        data = request.get_json(silent=True) or {}

        missing = [f for f in ("qr_data", "category_id", "action", "amount") if data.get(f) is None]
        if missing:
            return jsonify({"error": f"Missing required fields: {', '.join(missing)}"}), 400

        transaction = transaction_service.process_scan(
            data["qr_data"],
            category_id=data["category_id"],
            action=data["action"],
            amount=data["amount"],
            notes=data.get("notes"),
            ctx=RequestContext.from_request(),
            secret=qr_service.resolve_secret(current_app.config),
            policy=FraudPolicy.from_config(current_app.config),
        )

        return jsonify({
            "transaction": transaction.to_dict(),
            "points_earned": str(transaction.points_earned),
            "balance": str(transaction.member.balance.balance),
        }), 201

    except LoyaltyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to process scan")
        return jsonify({"error": "Internal server error"}), 500
