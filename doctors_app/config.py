import logging
import os
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./doctors_app.db")

# Auth - tokens are issued by the auth service, this API only verifies them
JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    import warnings

    warnings.warn(
        "JWT_SECRET not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    JWT_SECRET = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Appointment slots are wall-clock times in the clinics' timezone
TZ_NAME = os.getenv("APP_TIMEZONE", "Africa/Dakar")
try:
    APP_TIMEZONE = ZoneInfo(TZ_NAME)
except Exception:
    logger.warning(f"⚠️ Invalid APP_TIMEZONE '{TZ_NAME}'. Defaulting to UTC.")
    APP_TIMEZONE = ZoneInfo("UTC")

# Scheduling rules
CANCELLATION_CUTOFF_HOURS = float(os.getenv("CANCELLATION_CUTOFF_HOURS", "2"))
REMINDER_WINDOW_HOURS = float(os.getenv("REMINDER_WINDOW_HOURS", "24"))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "XOF")
DEFAULT_COUNTRY = os.getenv("DEFAULT_COUNTRY", "Sénégal")

# Push notifications (Firebase Cloud Messaging through the Admin SDK)
FIREBASE_SERVICE_ACCOUNT_PATH = os.getenv("FIREBASE_SERVICE_ACCOUNT_PATH")
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")

# SMS (Twilio REST API)
SMS_ACCOUNT_SID = os.getenv("SMS_ACCOUNT_SID")
SMS_AUTH_TOKEN = os.getenv("SMS_AUTH_TOKEN")
SMS_FROM_NUMBER = os.getenv("SMS_FROM_NUMBER")

# Outbound HTTP timeout for notification gateways (seconds)
NOTIFICATION_TIMEOUT = float(os.getenv("NOTIFICATION_TIMEOUT", "10"))
