"""Environment-driven settings, loaded once from ``.env`` via python-dotenv."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv(
    "DATABASE_URL", f"sqlite+aiosqlite:///{BASE_DIR / 'db' / 'database.db'}"
)

# Razorpay
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
RAZORPAY_API_URL = os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "15"))

# Pricing
CURRENCY = os.getenv("CURRENCY", "INR")
INSTRUCTOR_SHARE_PERCENTAGE = int(os.getenv("INSTRUCTOR_SHARE_PERCENTAGE", "70"))

# Reconciliation
WEBHOOK_COMPLETES_PAYMENTS = _flag("WEBHOOK_COMPLETES_PAYMENTS", True)
PENDING_PAYMENT_TTL_HOURS = int(os.getenv("PENDING_PAYMENT_TTL_HOURS", "24"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PAYMENT_LOG_FILE = os.getenv("PAYMENT_LOG_FILE", "")

# Notifications
TELEGRAM_BOT_TOKEN = (
    os.getenv("TELEGRAM_BOT_TOKEN")
    or os.getenv("BOT_TOKEN")
    or ""
).strip().strip("'\"")
