# backend/repairdesk/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/repairdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///repairdesk.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Password hashing cost
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Staff tokens (desktop app)
    JWT_SECRET = os.environ.get("JWT_SECRET", "dev-jwt-secret-change-me")
    JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
    JWT_ISSUER = os.environ.get("JWT_ISSUER", "repairdesk-api")
    JWT_AUDIENCE = os.environ.get("JWT_AUDIENCE", "repairdesk-desktop-app")
    JWT_EXPIRES_HOURS = int(os.environ.get("JWT_EXPIRES_HOURS", "8"))

    # Client sessions (web portal)
    CLIENT_SESSION_COOKIE = os.environ.get("CLIENT_SESSION_COOKIE", "repairdesk_session")
    CLIENT_SESSION_HOURS = int(os.environ.get("CLIENT_SESSION_HOURS", "24"))
    CLIENT_SESSION_IDLE_HOURS = int(os.environ.get("CLIENT_SESSION_IDLE_HOURS", "2"))
    CLIENT_SESSION_COOKIE_SECURE = os.environ.get("CLIENT_SESSION_COOKIE_SECURE", "false").lower() == "true"

    # Electronic invoicing
    INVOICE_ESTABLISHMENT = os.environ.get("INVOICE_ESTABLISHMENT", "001")
    INVOICE_EMISSION_POINT = os.environ.get("INVOICE_EMISSION_POINT", "001")
    INVOICE_ISSUER_TAX_ID = os.environ.get("INVOICE_ISSUER_TAX_ID", "1790012345001")
    INVOICE_ENVIRONMENT = os.environ.get("INVOICE_ENVIRONMENT", "1")  # 1 = test, 2 = production
    INVOICE_DOCUMENT_TYPE = os.environ.get("INVOICE_DOCUMENT_TYPE", "01")  # 01 = factura
    INVOICE_EMISSION_TYPE = os.environ.get("INVOICE_EMISSION_TYPE", "1")  # 1 = normal
    INVOICE_TAX_RATE = os.environ.get("INVOICE_TAX_RATE", "0.12")
    INVOICE_STORAGE_DIR = os.environ.get("INVOICE_STORAGE_DIR", "instance/invoices")

    ISSUER_NAME = os.environ.get("ISSUER_NAME", "RepairDesk Servicios S.A.")
    ISSUER_ADDRESS = os.environ.get("ISSUER_ADDRESS", "Av. Principal 123")
