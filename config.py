import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./spendwise.db")

    JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_AUDIENCE = os.getenv("JWT_AUDIENCE") or None

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    SMTP_HOST = os.getenv("SMTP_HOST") or None
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME") or None
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD") or None
    SMTP_USE_TLS = _flag("SMTP_USE_TLS", "true")
    SMTP_TIMEOUT_SECONDS = float(os.getenv("SMTP_TIMEOUT_SECONDS", "10"))
    MAIL_FROM = os.getenv("MAIL_FROM", "SpendWise <no-reply@spendwise.local>")

    # "every" notifies on each evaluation that sees a breach,
    # "once" only on the transition into breach for a limit period.
    LIMIT_NOTIFY_POLICY = os.getenv("LIMIT_NOTIFY_POLICY", "every").strip().lower()
    LIMIT_CHECK_INTERVAL_SECONDS = int(os.getenv("LIMIT_CHECK_INTERVAL_SECONDS", "60"))
    LIMIT_CHECK_MAX_ATTEMPTS = int(os.getenv("LIMIT_CHECK_MAX_ATTEMPTS", "5"))

    SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED", "true")


def configure_logging(level=None):
    logging.basicConfig(
        level=(level or Config.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
