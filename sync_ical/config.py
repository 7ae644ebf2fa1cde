import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEBUG = LOG_LEVEL == "DEBUG"

DRY_RUN = os.getenv("DRY_RUN", "false").lower() == "true"

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL must be set in the environment")

SCHEMA = "cleanbuz"

ALLOWED_ORIGINS: list[str] = [
    origin.strip() for origin in os.getenv("ALLOWED_ORIGINS", "*").split(",") if origin.strip()
]

# Feed fetching
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "15"))
FETCH_MAX_BYTES = int(os.getenv("FETCH_MAX_BYTES", str(5 * 1024 * 1024)))
FETCH_MAX_RETRIES = int(os.getenv("FETCH_MAX_RETRIES", "3"))
FETCH_BACKOFF_SECONDS = float(os.getenv("FETCH_BACKOFF_SECONDS", "1.0"))

# Sync pass
SYNC_MAX_WORKERS = int(os.getenv("SYNC_MAX_WORKERS", "5"))
PARTIAL_FEED_DROP_THRESHOLD = float(os.getenv("PARTIAL_FEED_DROP_THRESHOLD", "0.5"))
FAILURE_ALERT_THRESHOLD = int(os.getenv("FAILURE_ALERT_THRESHOLD", "3"))

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")
