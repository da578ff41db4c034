# Overview: Read-only Flask API route for the audit trail.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_role
from ..models import EntityKind
from ..models.auth import ROLE_ADMIN
from ..services import audit_service


audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")


@audit_bp.get("/audit-logs")
@require_auth
@require_role(ROLE_ADMIN)
def list_audit_logs_route():
    """
    Audit entries, newest first.

    Query params: action, subject_kind, subject_id, user_id, limit (max 500)
    """
    try:
        subject_kind = request.args.get("subject_kind")
        if subject_kind:
            try:
                subject_kind = EntityKind(subject_kind)
            except ValueError:
                allowed = ", ".join(kind.value for kind in EntityKind)
                return jsonify({"error": f"subject_kind must be one of: {allowed}"}), 400

        entries = audit_service.list_audit_entries(
            action=request.args.get("action"),
            subject_kind=subject_kind or None,
            subject_id=request.args.get("subject_id", type=int),
            user_id=request.args.get("user_id", type=int),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"audit_logs": [e.to_dict() for e in entries]}), 200

    except Exception:
        current_app.logger.exception("Failed to list audit logs")
        return jsonify({"error": "Internal server error"}), 500
