# Overview: Signs and verifies member QR payloads (HMAC-SHA256 + expiry).

"""
Member QR Payload Codec

Wire format (JSON object; key order irrelevant on the wire):

    {
      "member_id": "BMPC-000123",
      "issued_at": 1704240000,
      "expires_at": 1704326400,
      "checksum": "<hex hmac-sha256>"
    }

The checksum is HMAC-SHA256 over the key-sorted, compact JSON encoding of
{member_id, issued_at, expires_at}, keyed by the server-held QR secret.

SECRET POLICY: without QR_SECRET, production refuses to run; every other
environment signs with DEV_FALLBACK_SECRET. That key is public (it is in
this file), so any non-production deployment reachable by untrusted clients
should set QR_SECRET too.
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from ..validation import ConfigurationError, SecurityError
from loyalty.time_utils import Clock, SYSTEM_CLOCK

logger = logging.getLogger(__name__)


DEV_FALLBACK_SECRET = "default_insecure_secret"
DEFAULT_VALIDITY_SECONDS = 86400
CLOCK_DRIFT_TOLERANCE_SECONDS = 300

SIGNED_FIELDS = ("member_id", "issued_at", "expires_at")
REQUIRED_FIELDS = SIGNED_FIELDS + ("checksum",)


class QRErrorCode(str, enum.Enum):
    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"
    INTEGRITY_FAILURE = "INTEGRITY_FAILURE"
    EXPIRED = "EXPIRED"
    FUTURE_ISSUED = "FUTURE_ISSUED"
    VALIDATION_ERROR = "VALIDATION_ERROR"


ERROR_MESSAGES = {
    QRErrorCode.MALFORMED_PAYLOAD: "Invalid QR payload structure",
    QRErrorCode.INTEGRITY_FAILURE: "Integrity check failed",
    QRErrorCode.EXPIRED: "QR code expired",
    QRErrorCode.FUTURE_ISSUED: "Invalid issue time (future date)",
    QRErrorCode.VALIDATION_ERROR: "Validation error occurred",
}


@dataclass(frozen=True)
class QRVerification:
    valid: bool
    member_code: str | None = None
    error: QRErrorCode | None = None

    @property
    def message(self) -> str | None:
        return ERROR_MESSAGES[self.error] if self.error else None

    def raise_for_error(self) -> str:
        """Return the member code, or raise SecurityError carrying the failure code."""
        if not self.valid:
            raise SecurityError(self.message, code=self.error.value)
        return self.member_code


def resolve_secret(config: Mapping[str, Any]) -> str:
    """
    Pick the HMAC key from app config.

    Raises ConfigurationError when QR_SECRET is empty in production.
    """
    secret = config.get("QR_SECRET")
    if secret:
        return secret
    if config.get("LOYALTY_ENV") == "production":
        raise ConfigurationError("QR_SECRET is not configured in production")
    logger.warning("QR_SECRET not set; signing with the insecure development secret")
    return DEV_FALLBACK_SECRET


def canonical_json(data: Mapping[str, Any]) -> str:
    return json.dumps({k: data[k] for k in SIGNED_FIELDS}, sort_keys=True, separators=(",", ":"))


def compute_checksum(data: Mapping[str, Any], secret: str) -> str:
    message = canonical_json(data).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign_payload(
    member_code: str,
    validity_seconds: int = DEFAULT_VALIDITY_SECONDS,
    *,
    secret: str,
    clock: Clock = SYSTEM_CLOCK,
) -> dict:
    """Build a signed payload valid from now for validity_seconds."""
    issued_at = clock.timestamp()
    data = {
        "member_id": member_code,
        "issued_at": issued_at,
        "expires_at": issued_at + int(validity_seconds),
    }
    data["checksum"] = compute_checksum(data, secret)
    return data


def _is_well_formed(payload: Any) -> bool:
    if not isinstance(payload, Mapping):
        return False
    if any(payload.get(field) is None for field in REQUIRED_FIELDS):
        return False
    if not isinstance(payload["member_id"], str) or not isinstance(payload["checksum"], str):
        return False
    for field in ("issued_at", "expires_at"):
        value = payload[field]
        if isinstance(value, bool) or not isinstance(value, int):
            return False
    return True


def verify_payload(payload: Any, *, secret: str, clock: Clock = SYSTEM_CLOCK) -> QRVerification:
    """
    Verify a scanned payload.

    Checks, in order: structure, checksum (constant-time), expiry, issue time
    no more than CLOCK_DRIFT_TOLERANCE_SECONDS in the future. Never raises;
    unexpected errors are reported as VALIDATION_ERROR.
    """
    try:
        if not _is_well_formed(payload):
            logger.warning("QR payload rejected: malformed structure")
            return QRVerification(valid=False, error=QRErrorCode.MALFORMED_PAYLOAD)

        expected = compute_checksum(payload, secret)
        if not hmac.compare_digest(expected.encode("utf-8"), payload["checksum"].encode("utf-8")):
            logger.warning("QR integrity check failed for member_id=%s", payload["member_id"])
            return QRVerification(valid=False, error=QRErrorCode.INTEGRITY_FAILURE)

        now = clock.timestamp()
        if now > payload["expires_at"]:
            logger.warning("QR payload expired for member_id=%s", payload["member_id"])
            return QRVerification(valid=False, error=QRErrorCode.EXPIRED)

        if payload["issued_at"] > now + CLOCK_DRIFT_TOLERANCE_SECONDS:
            logger.warning("QR payload issued in the future for member_id=%s", payload["member_id"])
            return QRVerification(valid=False, error=QRErrorCode.FUTURE_ISSUED)

        return QRVerification(valid=True, member_code=payload["member_id"])

    except Exception:
        logger.exception("QR validation raised unexpectedly")
        return QRVerification(valid=False, error=QRErrorCode.VALIDATION_ERROR)
