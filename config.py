"""
Application configuration

Every setting is read from the environment (a local .env file is honoured).
"""
import logging
import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _get_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {key} must be an integer") from exc


def _get_list(key: str, default: List[str]) -> List[str]:
    value = os.getenv(key)
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


# Database
DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
DATABASE_NAME: Optional[str] = os.getenv("DATABASE_NAME")

# Sessions
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
JWT_ALG = "HS256"
TOKEN_EXPIRE_MIN = _get_int("TOKEN_EXPIRE_MIN", 60 * 24 * 7)

# Email verification / password reset
VERIFICATION_TOKEN_TTL_HOURS = _get_int("VERIFICATION_TOKEN_TTL_HOURS", 24)
RESET_TOKEN_TTL_MINUTES = _get_int("RESET_TOKEN_TTL_MINUTES", 30)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")

# SMTP
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = _get_int("SMTP_PORT", 587)
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL", "noreply@fleurease.shop")
SMTP_FROM_NAME = os.getenv("SMTP_FROM_NAME", "FleurEase")
SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() in ("1", "true", "yes")
# Development only: log instead of sending when SMTP_HOST is unset
SMTP_SUPPRESS_SEND = os.getenv("SMTP_SUPPRESS_SEND", "false").lower() in ("1", "true", "yes")

# Image hosting
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY", "")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET", "")

# HTTP
CORS_ALLOW_ORIGINS = _get_list("CORS_ALLOW_ORIGINS", ["*"])

# Demo data
SEED_ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL", "admin@fleurease.shop")
SEED_ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "Admin@123")


def configure_logging() -> None:
    """Configure logging defaults for the application."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
