"""
Rate limiting for the scan API (slowapi).

Limits are counted per owner (``X-User-Id``) so several users behind one
proxy do not share a budget; anonymous requests fall back to the client IP.
"""
import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from trustforge.core.config import settings

logger = logging.getLogger(__name__)

# Per-route limits
UPLOAD_LIMIT = "10/minute"
RETRY_LIMIT = "10/minute"
STATUS_LIMIT = "120/minute"
REPORT_LIMIT = "20/minute"


def owner_or_ip(request: Request) -> str:
    owner = (request.headers.get("X-User-Id") or "").strip()
    if owner:
        return f"owner:{owner}"
    return f"ip:{get_remote_address(request)}"


def _storage_uri() -> str:
    if not (settings.REDIS_URL and settings.RATE_LIMIT_ENABLED):
        return "memory://"
    try:
        import redis
        redis.from_url(settings.REDIS_URL, socket_connect_timeout=1).ping()
    except Exception as e:
        logger.warning(f"Rate limiter: Redis unreachable ({e}); counters kept in process memory.")
        return "memory://"
    logger.info(f"Rate limiter counters stored in Redis at {settings.REDIS_URL}")
    return settings.REDIS_URL


limiter = Limiter(
    key_func=owner_or_ip,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=_storage_uri(),
)
