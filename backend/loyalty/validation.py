from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Points and currency amounts are stored as NUMERIC(15, 2)
MAX_AMOUNT = Decimal("9999999999999.99")


class LoyaltyError(Exception):
    """
    Base for every user-safe failure raised by the loyalty core.

    `code` is a stable machine identifier; the message is safe to show the
    caller verbatim. Routes map `http_status` straight onto the response.
    """
    http_status = 400
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(LoyaltyError):
    """400-level input problem."""


class NotFoundError(LoyaltyError):
    """404-level missing member, reward, category or redemption."""
    http_status = 404
    default_code = "NOT_FOUND"


class ConflictError(LoyaltyError):
    """409-level business rule conflict (duplicate, stock, balance, inactive)."""
    http_status = 409
    default_code = "CONFLICT"


class SecurityError(LoyaltyError):
    """QR integrity, expiry or issue-time failure."""
    default_code = "INTEGRITY_FAILURE"


class FraudBlockError(LoyaltyError):
    """
    High-risk transaction rejected.

    The message lists the human-readable reasons; they are actionable for
    staff and are not secret.
    """
    http_status = 422
    default_code = "FRAUD_BLOCKED"

    def __init__(self, message: str, reasons: list[str] | None = None):
        super().__init__(message)
        self.reasons = list(reasons or [])

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reasons"] = self.reasons
        return data


class ConfigurationError(RuntimeError):
    """Fatal misconfiguration (e.g. no QR secret in production)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Booleans first: bool is a subclass of int
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or 'e' in stripped.lower() or '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    # Decimals (amounts, points, rule values)
    if isinstance(coltype, Numeric):
        return parse_decimal(value, col.key)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def parse_decimal(value: Any, field: str) -> Decimal:
    """Parse a JSON number or numeric string into a finite Decimal."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(str(value).strip()) if isinstance(value, str) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if abs(result) > MAX_AMOUNT:
        raise ValidationError(f"{field} is out of range")
    return result


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_reward(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if patch.get("points_required") is not None and patch["points_required"] < 0:
        raise ValidationError("points_required must be >= 0")
    if patch.get("stock") is not None and patch["stock"] < 0:
        raise ValidationError("stock must be >= 0")


def enforce_rules_point_rule(patch: dict) -> None:
    from .models.catalog import RuleKind

    if "rule_type" in patch:
        try:
            RuleKind(patch["rule_type"])
        except ValueError:
            allowed = ", ".join(kind.value for kind in RuleKind)
            raise ValidationError(f"rule_type must be one of: {allowed}")
    if patch.get("value") is not None and patch["value"] < 0:
        raise ValidationError("value must be >= 0")
    if patch.get("min_amount") is not None and patch["min_amount"] < 0:
        raise ValidationError("min_amount must be >= 0")
    if patch.get("max_points") is not None and patch["max_points"] < 0:
        raise ValidationError("max_points must be >= 0")
