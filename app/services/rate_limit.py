"""
Per-IP Rate Limiting

Fixed-window counters in Redis (INCR + EXPIRE), checked by FastAPI
dependencies before a handler does any work.

    register             3 / hour
    login                5 / minute
    superadmin-login     5 / minute (own bucket)
    resend-verification  60 / minute

An unreachable Redis lets the request through and logs a warning; the
limits protect against abuse, they are not a correctness mechanism.

Author: Khalil Bannouri
Version: 4.0.0
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional

import redis.asyncio as aioredis
from fastapi import Request
from redis.exceptions import RedisError

from app.core.config import get_settings
from app.core.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    count: int
    limit: int


class RateLimiter:
    """
    Fixed-window request counter.

    Args:
        redis: Async Redis client
        name: Bucket name, part of every key
        limit: Requests allowed per window
        window_seconds: Window length
        enabled: False turns every check into a pass
    """

    def __init__(
        self,
        redis: Optional[aioredis.Redis],
        name: str,
        limit: int,
        window_seconds: int,
        enabled: bool = True,
    ):
        self.redis = redis
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.enabled = enabled

    def _key(self, identifier: str) -> str:
        return f"ratelimit:{self.name}:{identifier}"

    async def hit(self, identifier: str) -> RateLimitResult:
        """Count one request for ``identifier``."""
        if not self.enabled or self.redis is None:
            return RateLimitResult(allowed=True, count=0, limit=self.limit)

        key = self._key(identifier)
        try:
            count = int(await self.redis.incr(key))
            if count == 1:
                await self.redis.expire(key, self.window_seconds)
        except RedisError as e:
            logger.warning(f"Rate limiter {self.name} unavailable, allowing request: {e}")
            return RateLimitResult(allowed=True, count=0, limit=self.limit)

        return RateLimitResult(allowed=count <= self.limit, count=count, limit=self.limit)


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

@lru_cache()
def get_redis() -> aioredis.Redis:
    """Shared async Redis client."""
    settings = get_settings()
    return aioredis.from_url(settings.redis_url, decode_responses=True)


def client_ip(request: Request, trusted_proxies: int = 0) -> str:
    """
    Address a rate-limit bucket is keyed on.

    Forwarding headers are only read when ``trusted_proxies`` reverse
    proxies sit in front of the app. Each of them appends one entry to
    X-Forwarded-For, so the client is the entry that many places from the
    right; anything further left was sent by the client and is ignored.
    """
    peer = request.client.host if request.client else "unknown"
    if trusted_proxies <= 0:
        return peer

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        if hops:
            return hops[-trusted_proxies] if len(hops) >= trusted_proxies else hops[0]
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer


@lru_cache()
def get_rate_limiter(name: str) -> RateLimiter:
    """Limiter for one of the named buckets."""
    settings = get_settings()
    limits = {
        "register": (settings.register_rate_limit, settings.register_rate_window_seconds),
        "login": (settings.login_rate_limit, settings.login_rate_window_seconds),
        "superadmin-login": (settings.login_rate_limit, settings.login_rate_window_seconds),
        "api": (settings.api_rate_limit, settings.api_rate_window_seconds),
    }
    limit, window = limits[name]
    redis = get_redis() if settings.rate_limit_enabled else None
    return RateLimiter(redis, name, limit, window, enabled=settings.rate_limit_enabled)


def rate_limit(name: str) -> Callable:
    """
    Build a dependency that rejects the request once the bucket is full.

    Usage:
        limit_register = rate_limit("register")
        @app.post("/register", dependencies=[Depends(limit_register)])
    """

    async def dependency(request: Request) -> None:
        ip = client_ip(request, get_settings().trusted_proxy_count)
        result = await get_rate_limiter(name).hit(ip)
        if not result.allowed:
            logger.warning(f"Rate limit {name} exceeded by {ip} ({result.count}/{result.limit})")
            raise RateLimitExceeded(f"{name} rate limit exceeded", context={"ip": ip})

    dependency.__name__ = f"rate_limit_{name.replace('-', '_')}"
    return dependency


limit_register = rate_limit("register")
limit_login = rate_limit("login")
limit_superadmin_login = rate_limit("superadmin-login")
limit_api = rate_limit("api")
