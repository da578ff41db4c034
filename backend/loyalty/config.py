# backend/loyalty/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/loyalty.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///loyalty.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # development | testing | production
    # Production refuses to sign or verify QR payloads without QR_SECRET.
    LOYALTY_ENV = os.environ.get("LOYALTY_ENV", "development")

    # HMAC key for member QR payloads. Outside production an empty value falls
    # back to a fixed, publicly known development key (see qr_service).
    QR_SECRET = os.environ.get("QR_SECRET", "")
    QR_VALIDITY_SECONDS = int(os.environ.get("QR_VALIDITY_SECONDS", "86400"))

    # IANA zone used for the fraud engine's late-night signal
    FRAUD_TIMEZONE = os.environ.get("FRAUD_TIMEZONE", "UTC")

    # SQLite has no row locks; open every transaction with BEGIN IMMEDIATE
    # so balance and stock writers serialize on the database lock.
    SQLITE_IMMEDIATE_TRANSACTIONS = True
