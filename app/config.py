import os

from dotenv import load_dotenv

# Load .env file with explicit UTF-8 encoding
load_dotenv(encoding="utf-8")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


DATABASE_URL = os.getenv("DATABASE_URL") or "sqlite:///./autogift.db"

LOG_LEVEL = os.getenv("LOG_LEVEL") or "INFO"

CORS_ORIGINS = _env_list(
    "CORS_ORIGINS",
    [
        "http://localhost:3000",
        "https://localhost:3000",
        "http://127.0.0.1:3000",
        "https://127.0.0.1:3000",
    ],
)

# ─── Payment processor ───────────────────────────────────────────
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY") or ""
PAYMENT_CURRENCY = (os.getenv("PAYMENT_CURRENCY") or "usd").lower()

# ─── Fulfillment / product API ───────────────────────────────────
FULFILLMENT_API_URL = os.getenv("FULFILLMENT_API_URL") or "https://api.zinc.io/v1"
FULFILLMENT_API_KEY = os.getenv("FULFILLMENT_API_KEY") or ""
FULFILLMENT_RETAILER = os.getenv("FULFILLMENT_RETAILER") or "amazon"
FULFILLMENT_TIMEOUT_SECONDS = float(os.getenv("FULFILLMENT_TIMEOUT_SECONDS") or "15")

# ─── AI gift recommendations ─────────────────────────────────────
GIFT_RECOMMENDER_URL = os.getenv("GIFT_RECOMMENDER_URL") or ""
GIFT_RECOMMENDER_API_KEY = os.getenv("GIFT_RECOMMENDER_API_KEY") or ""
GIFT_RECOMMENDER_AGENT = os.getenv("GIFT_RECOMMENDER_AGENT") or "nicole"

# ─── Notifications ───────────────────────────────────────────────
NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL") or ""
APPROVAL_LINK_BASE_URL = os.getenv("APPROVAL_LINK_BASE_URL") or "http://localhost:3000/auto-gifts/approve"

# ─── Internal job scheduler ──────────────────────────────────────
INTERNAL_JOB_WORKER_ID = os.getenv("INTERNAL_JOB_WORKER_ID") or os.getenv("HOSTNAME") or "worker"
INTERNAL_JOB_BATCH_SIZE = _env_int("INTERNAL_JOB_BATCH_SIZE", 5)
INTERNAL_JOB_LOCK_TTL_SECONDS = _env_int("INTERNAL_JOB_LOCK_TTL_SECONDS", 600)
INTERNAL_JOB_IDLE_SLEEP_SECONDS = _env_int("INTERNAL_JOB_IDLE_SLEEP_SECONDS", 5)
INTERNAL_JOB_MAX_SLEEP_SECONDS = _env_int("INTERNAL_JOB_MAX_SLEEP_SECONDS", 30)

# Stage claims older than this are considered abandoned by a crashed worker.
STAGE_CLAIM_TTL_SECONDS = _env_int("STAGE_CLAIM_TTL_SECONDS", 900)
