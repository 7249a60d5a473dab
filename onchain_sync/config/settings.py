import os
from dotenv import load_dotenv

load_dotenv()

# ── Store ────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://postgres:postgres@db:5432/onchain_sync")

# ── Chain / RPC ──────────────────────────────────────────────────────
NETWORK              = os.getenv("NETWORK", "base-sepolia")
RPC_URL              = os.getenv("RPC_URL", f"https://base-sepolia.g.alchemy.com/v2/{os.getenv('ALCHEMY_API_KEY')}")
RPC_TIMEOUT_SECONDS  = int(os.getenv("RPC_TIMEOUT_SECONDS", "10"))
AVG_BLOCK_TIME_SECONDS = int(os.getenv("AVG_BLOCK_TIME_SECONDS", "2"))   # Base L2

# comma separated list, empty means "every address emitting a registered topic"
TRACKED_ADDRESSES = [
    a.strip().lower()
    for a in os.getenv("TRACKED_ADDRESSES", "").split(",")
    if a.strip()
]

# ── Backfill ─────────────────────────────────────────────────────────
BACKFILL_CHUNK_SIZE      = int(os.getenv("BACKFILL_CHUNK_SIZE", "500"))
BACKFILL_CHUNK_DELAY_MS  = int(os.getenv("BACKFILL_CHUNK_DELAY_MS", "100"))
BACKFILL_LOOKBACK_HOURS  = int(os.getenv("BACKFILL_LOOKBACK_HOURS", "1"))
BACKFILL_API_KEY         = os.getenv("BACKFILL_API_KEY")
BACKFILL_SCHEDULE_MINUTES = int(os.getenv("BACKFILL_SCHEDULE_MINUTES", "60"))
BACKFILL_LOCK_MS         = int(os.getenv("BACKFILL_LOCK_MS", str(15 * 60 * 1000)))

PENDING_BATCH_LIMIT   = int(os.getenv("PENDING_BATCH_LIMIT", "50"))
MAX_PENDING_ATTEMPTS  = int(os.getenv("MAX_PENDING_ATTEMPTS", "24"))

# ── Webhook ingress ──────────────────────────────────────────────────
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
RATE_LIMIT_MAX_REQUESTS   = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100"))

# "strict" rejects bad signatures, "advisory" only logs them
WEBHOOK_SIGNATURE_MODE = os.getenv("WEBHOOK_SIGNATURE_MODE", "strict").lower()

ALCHEMY_POOL_TRACKING_SIGNING_KEY = os.getenv("ALCHEMY_POOL_TRACKING_SIGNING_KEY")
ALCHEMY_AMM_TRACKING_SIGNING_KEY  = os.getenv("ALCHEMY_AMM_TRACKING_SIGNING_KEY")
QUICKNODE_POOL_TRACKING_SECRET    = os.getenv("QUICKNODE_POOL_TRACKING_SECRET")

# ── Celery / Redis ───────────────────────────────────────────────────
REDIS_URL             = os.getenv("REDIS_URL", "redis://redis:6379/0")
CELERY_BROKER_URL     = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", REDIS_URL)
