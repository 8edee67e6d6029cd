"""Redis-backed rate limiting dependency keyed by account or client address."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Tuple

from fastapi import HTTPException, Request
import redis.asyncio as redis

from config import settings
from services.session_token import read_session_token

logger = logging.getLogger(__name__)

RATE_KEY_PREFIX = "hirescore:rate"

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def _client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _rate_identity(request: Request) -> str:
    """Authenticated subject when a valid session is present, else the client address."""
    authorization = request.headers.get("authorization") or ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            return f"user:{read_session_token(token.strip()).user_id}"
        except ValueError:
            pass
    return f"ip:{_client_identifier(request)}"


async def _consume_local_quota(key: str, limit: int, window_seconds: int) -> bool:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count = 0
            reset_at = now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
        return count <= limit


async def _consume_redis_quota(key: str, limit: int, window_seconds: int) -> bool:
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        current = await redis_client.incr(key)
        if current == 1:
            await redis_client.expire(key, window_seconds)
    finally:
        await redis_client.aclose()
    return current <= limit


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[[Request], None]:
    """Return a FastAPI dependency that enforces per-account request quotas."""

    async def _dependency(request: Request):
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"{RATE_KEY_PREFIX}:{prefix}:{_rate_identity(request)}"
        try:
            allowed = await _consume_redis_quota(key, limit, window_seconds)
        except (redis.RedisError, OSError) as exc:
            logger.debug("Redis unavailable for rate limit %s, using local counters: %s", prefix, exc)
            allowed = await _consume_local_quota(key, limit, window_seconds)

        if not allowed:
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded for {prefix}. Try again later.",
            )

    return _dependency
