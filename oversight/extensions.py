"""
Shared client instances — Redis and the RQ dispatch queue.

The Redis client is created at import but does not connect until first use, so
importing this module is always safe (even when Redis is absent during tests).
"""
import logging
import redis

from oversight.config import REDIS_URL, DISPATCH_QUEUE_NAME

logger = logging.getLogger('oversight.extensions')

# ── Redis ─────────────────────────────────────────────────────────────────────
redis_client = redis.from_url(REDIS_URL, decode_responses=False)

# ── RQ (lazy, no Redis round-trip at import) ──────────────────────────────────
_dispatch_queue = None


def get_dispatch_queue():
    """Return the RQ queue used for push-style dispatch wake-ups."""
    global _dispatch_queue
    if _dispatch_queue is None:
        from rq import Queue
        _dispatch_queue = Queue(DISPATCH_QUEUE_NAME, connection=redis_client)
    return _dispatch_queue
