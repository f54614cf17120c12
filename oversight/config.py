"""
Centralized configuration — all env vars, queue tuning, domain constants.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
DISPATCH_QUEUE_NAME = os.getenv('DISPATCH_QUEUE_NAME', 'dispatch')
DISPATCH_TICK_FUNC = 'oversight.worker.dispatch_tick'

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Instagram Graph API ───────────────────────────────────────────────────────
GRAPH_API_BASE = os.getenv('GRAPH_API_BASE', 'https://graph.facebook.com/v23.0')
REQUEST_TIMEOUT_SECONDS = float(os.getenv('REQUEST_TIMEOUT_SECONDS', '10'))
PUBLISH_TIMEOUT_SECONDS = float(os.getenv('PUBLISH_TIMEOUT_SECONDS', '15'))

# ── Token service (credential resolver) ──────────────────────────────────────
TOKEN_SERVICE_URL = os.getenv('TOKEN_SERVICE_URL', 'http://localhost:3001')
TOKEN_SERVICE_KEY = os.getenv('TOKEN_SERVICE_KEY')

# ── Dispatcher ────────────────────────────────────────────────────────────────
POLL_INTERVAL_SECONDS = float(os.getenv('POLL_INTERVAL_SECONDS', '5'))
CLAIM_TIMEOUT_SECONDS = int(os.getenv('CLAIM_TIMEOUT_SECONDS', '120'))
WORKER_BATCH_SIZE = int(os.getenv('WORKER_BATCH_SIZE', '10'))
WORKER_POOL_SIZE = int(os.getenv('WORKER_POOL_SIZE', '4'))

# ── Retry / backoff ───────────────────────────────────────────────────────────
BACKOFF_BASE_SECONDS = float(os.getenv('BACKOFF_BASE_SECONDS', '1'))
BACKOFF_CAP_SECONDS = float(os.getenv('BACKOFF_CAP_SECONDS', '30'))

# Max retries per error category; auth_failure and permanent never retry.
RETRY_CEILINGS = {
    'transient': int(os.getenv('RETRY_CEILING_TRANSIENT', '3')),
    'rate_limit': int(os.getenv('RETRY_CEILING_RATE_LIMIT', '3')),
    'unknown': int(os.getenv('RETRY_CEILING_UNKNOWN', '2')),
}

# ── Auth ─────────────────────────────────────────────────────────────────────
DASHBOARD_TOKEN = os.getenv('DASHBOARD_TOKEN')
SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-change-me')

# ── Pagination ────────────────────────────────────────────────────────────────
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200

# ── Attribution ──────────────────────────────────────────────────────────────
# Used when no attribution_models row exists for the account.
DEFAULT_ATTRIBUTION_WEIGHTS = {
    'first_touch': 0.20,
    'last_touch': 0.40,
    'linear': 0.20,
    'time_decay': 0.20,
}

# ── Operator-facing failure messages, keyed by error category ────────────────
OPERATOR_MESSAGES = {
    'auth_failure': 'Reconnect required',
    'permanent': 'Content rejected',
    'rate_limit': 'Temporarily rate-limited',
    'transient': 'Retrying',
    'unknown': 'Retrying',
}


def validate_settings():
    """Fail fast on settings that would break claim safety."""
    longest_call = max(REQUEST_TIMEOUT_SECONDS, PUBLISH_TIMEOUT_SECONDS)
    # publish_post makes two sequential calls under one claim
    if longest_call * 2 >= CLAIM_TIMEOUT_SECONDS:
        raise ValueError(
            f"Provider timeouts ({longest_call}s per call) must stay well under "
            f"CLAIM_TIMEOUT_SECONDS ({CLAIM_TIMEOUT_SECONDS}s)"
        )
    if WORKER_BATCH_SIZE < 1 or WORKER_POOL_SIZE < 1:
        raise ValueError("WORKER_BATCH_SIZE and WORKER_POOL_SIZE must be >= 1")
