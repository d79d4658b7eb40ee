"""Tests for the fixed-window rate limiter."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.services.rate_limit import RateLimiter, client_ip


class FakeRedis:
    """Just enough of redis.asyncio.Redis for INCR + EXPIRE."""

    def __init__(self):
        self.counts: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    async def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True


class BrokenRedis:

    async def incr(self, key):
        raise RedisConnectionError("connection refused")


class FakeRequest:

    def __init__(self, headers=None, host="10.0.0.1"):
        self.headers = headers or {}
        self.client = type("Client", (), {"host": host})() if host else None


class TestRateLimiter:

    async def test_blocks_after_limit(self):
        redis = FakeRedis()
        limiter = RateLimiter(redis, "login", limit=3, window_seconds=60)

        results = [await limiter.hit("1.2.3.4") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[-1].count == 4
        assert redis.ttls == {"ratelimit:login:1.2.3.4": 60}

    async def test_buckets_are_per_identifier(self):
        limiter = RateLimiter(FakeRedis(), "register", limit=1, window_seconds=3600)

        assert (await limiter.hit("1.1.1.1")).allowed
        assert (await limiter.hit("2.2.2.2")).allowed
        assert not (await limiter.hit("1.1.1.1")).allowed

    async def test_buckets_are_per_name(self):
        redis = FakeRedis()
        login = RateLimiter(redis, "login", limit=1, window_seconds=60)
        admin = RateLimiter(redis, "superadmin-login", limit=1, window_seconds=60)

        await login.hit("1.1.1.1")

        assert (await admin.hit("1.1.1.1")).allowed

    async def test_expire_set_only_on_first_hit(self):
        redis = FakeRedis()
        limiter = RateLimiter(redis, "api", limit=10, window_seconds=60)
        await limiter.hit("ip")
        redis.ttls.clear()

        await limiter.hit("ip")

        assert redis.ttls == {}

    async def test_redis_outage_lets_requests_through(self):
        limiter = RateLimiter(BrokenRedis(), "login", limit=1, window_seconds=60)

        for _ in range(3):
            assert (await limiter.hit("1.2.3.4")).allowed

    async def test_disabled_limiter_never_blocks(self):
        redis = FakeRedis()
        limiter = RateLimiter(redis, "login", limit=1, window_seconds=60, enabled=False)

        for _ in range(3):
            assert (await limiter.hit("1.2.3.4")).allowed
        assert redis.counts == {}


class TestClientIp:

    @pytest.mark.parametrize(
        "headers",
        [
            {"x-forwarded-for": "203.0.113.7"},
            {"x-forwarded-for": "203.0.113.7, 10.0.0.2"},
            {"x-real-ip": "198.51.100.4"},
            {},
        ],
    )
    def test_headers_ignored_without_trusted_proxy(self, headers):
        assert client_ip(FakeRequest(headers)) == "10.0.0.1"

    @pytest.mark.parametrize(
        "headers, proxies, expected",
        [
            ({"x-forwarded-for": "198.51.100.9"}, 1, "198.51.100.9"),
            ({"x-forwarded-for": "1.1.1.1, 198.51.100.9"}, 1, "198.51.100.9"),
            ({"x-forwarded-for": "1.1.1.1, 198.51.100.9, 10.0.0.2"}, 2, "198.51.100.9"),
            ({"x-forwarded-for": "198.51.100.9"}, 2, "198.51.100.9"),
            ({"x-real-ip": " 198.51.100.4 "}, 1, "198.51.100.4"),
            ({}, 1, "10.0.0.1"),
        ],
    )
    def test_trusted_proxy_hops(self, headers, proxies, expected):
        assert client_ip(FakeRequest(headers), proxies) == expected

    async def test_spoofed_forwarded_for_shares_one_bucket(self):
        limiter = RateLimiter(FakeRedis(), "login", limit=2, window_seconds=60)
        results = []
        for n in range(3):
            request = FakeRequest({"x-forwarded-for": f"6.6.6.{n}, 198.51.100.9"})
            results.append(await limiter.hit(client_ip(request, 1)))

        assert [r.allowed for r in results] == [True, True, False]

    def test_unknown_without_client(self):
        assert client_ip(FakeRequest(host=None)) == "unknown"
