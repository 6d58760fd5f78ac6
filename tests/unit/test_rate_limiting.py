"""Test rate limiting middleware."""

from unittest.mock import Mock

import fakeredis
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient
import pytest
import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from slowapi import Limiter

from nutriplan.core.config import MiddlewareConfig, Settings
from nutriplan.middleware.rate_limiting import (
    LOGIN_RATE_LIMIT_MESSAGE,
    RateLimitingMiddleware,
    RateLimitPolicy,
    get_ip_only,
    get_user_id_or_ip,
    rate_limit_string,
    setup_rate_limiting,
)
from nutriplan.models.auth import Principal


class TestRateLimitHelpers:
    """Test rate limiting helper functions."""

    def test_get_user_id_or_ip_with_user(self):
        mock_request = Mock(spec=Request)
        mock_request.state.user = {"user_id": "user123"}

        assert get_user_id_or_ip(mock_request) == "user:user123"

    def test_get_user_id_or_ip_with_uid(self):
        mock_request = Mock(spec=Request)
        mock_request.state.user = {"uid": "uid456"}

        assert get_user_id_or_ip(mock_request) == "user:uid456"

    def test_get_user_id_or_ip_with_principal(self):
        mock_request = Mock(spec=Request)
        mock_request.state.user = Principal(subject_id="abc", email="a@b.com")

        assert get_user_id_or_ip(mock_request) == "user:abc"

    def test_get_user_id_or_ip_fallback_to_ip(self):
        mock_request = Mock(spec=Request)
        mock_request.state.user = None
        mock_request.client = Mock(host="192.168.1.1")

        assert get_user_id_or_ip(mock_request) == "ip:192.168.1.1"

    def test_get_ip_only_no_client(self):
        mock_request = Mock(spec=Request)
        mock_request.client = None

        assert get_ip_only(mock_request) == "ip:127.0.0.1"

    def test_rate_limit_string_from_window_ms(self):
        assert rate_limit_string(100, 900_000) == "100 per 900 second"
        assert rate_limit_string(5, 200) == "5 per 1 second"


def memory_policy(limit: str, **kwargs) -> RateLimitPolicy:
    return RateLimitPolicy(RateLimitingMiddleware.create_limiter([limit]), limit, **kwargs)


class TestRateLimitPolicy:
    def test_allows_up_to_limit(self):
        policy = memory_policy("3 per 60 second")

        results = [policy.hit("ip:1")[0] for _ in range(4)]

        assert results == [True, True, True, False]

    def test_keys_are_independent(self):
        policy = memory_policy("1 per 60 second")

        assert policy.hit("ip:1")[0]
        assert policy.hit("ip:2")[0]

    def test_retry_after_within_window(self):
        policy = memory_policy("1 per 60 second")
        policy.hit("ip:1")

        allowed, retry_after = policy.hit("ip:1")

        assert not allowed
        assert 1 <= retry_after <= 60

    def test_scopes_do_not_share_counters(self):
        limiter = RateLimitingMiddleware.create_limiter(["1 per 60 second"])
        general = RateLimitPolicy(limiter, "1 per 60 second")
        login = RateLimitPolicy(limiter, "1 per 60 second", scope="login")

        assert general.hit("ip:1")[0]
        assert login.hit("ip:1")[0]


class TestRedisBackedPolicy:
    """Counters shared through Redis, backed here by fakeredis."""

    @pytest.fixture
    def pool(self) -> redis.ConnectionPool:
        return redis.ConnectionPool(
            server=fakeredis.FakeServer(), connection_class=fakeredis.FakeConnection
        )

    def test_redis_storage_counts_across_limiters(self, pool):
        limit = "2 per 60 second"
        first = RateLimitPolicy(
            RateLimitingMiddleware.create_limiter(
                [limit], "redis://ratelimit:6379", storage_options={"connection_pool": pool}
            ),
            limit,
        )
        second = RateLimitPolicy(
            RateLimitingMiddleware.create_limiter(
                [limit], "redis://ratelimit:6379", storage_options={"connection_pool": pool}
            ),
            limit,
        )

        assert first.hit("ip:1")[0]
        assert second.hit("ip:1")[0]
        allowed, retry_after = first.hit("ip:1")

        assert not allowed
        assert 1 <= retry_after <= 60

    def test_default_policy_uses_redis_url(self, pool):
        settings = Settings(
            environment="testing", redis_url="redis://ratelimit:6379", rate_limit_max=1
        )

        policy = RateLimitingMiddleware.get_default_policy(
            settings, storage_options={"connection_pool": pool}
        )

        assert isinstance(policy.limiter, Limiter)
        assert policy.hit("ip:9") == (True, 0)
        assert not policy.hit("ip:9")[0]


def build_app(limit: int, login_limit: int, policy: RateLimitPolicy | None = None) -> FastAPI:
    window = "60 second"
    app = FastAPI()
    app.add_middleware(
        RateLimitingMiddleware,
        policy=policy or memory_policy(f"{limit} per {window}"),
        login_policy=memory_policy(
            f"{login_limit} per {window}",
            key_func=get_ip_only,
            scope="login",
            message=LOGIN_RATE_LIMIT_MESSAGE,
        ),
        login_paths=("/api/auth/login",),
        exempt_paths=["/health"],
    )

    @app.get("/api/things")
    async def things() -> dict[str, bool]:
        return {"ok": True}

    @app.post("/api/auth/login")
    async def login() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    return app


class TestRateLimitingMiddleware:
    """Exceeding a policy returns 429 with Retry-After and the error envelope."""

    def test_create_limiter(self):
        limiter = RateLimitingMiddleware.create_limiter(["100/hour"])

        assert isinstance(limiter, Limiter)

    def test_get_auth_policy(self, settings):
        policy = RateLimitingMiddleware.get_auth_policy(settings)

        assert policy.limit == rate_limit_string(
            settings.login_rate_limit_max, settings.rate_limit_window_ms
        )
        assert policy.key_func is get_ip_only
        assert policy.scope == "login"

    def test_setup_rate_limiting_exposes_limiter(self, settings):
        app = FastAPI()

        policy = setup_rate_limiting(app, settings, MiddlewareConfig())

        assert app.state.limiter is policy.limiter

    @pytest.mark.asyncio
    async def test_general_policy(self):
        transport = ASGITransport(app=build_app(limit=2, login_limit=10))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            codes = [(await client.get("/api/things")).status_code for _ in range(3)]
            blocked = await client.get("/api/things")

        assert codes == [200, 200, 429]
        assert blocked.headers["Retry-After"]
        assert blocked.json()["success"] is False
        assert blocked.json()["retryAfter"] >= 1

    @pytest.mark.asyncio
    async def test_login_policy_is_stricter(self):
        transport = ASGITransport(app=build_app(limit=100, login_limit=1))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            first = await client.post("/api/auth/login")
            second = await client.post("/api/auth/login")
            other = await client.get("/api/things")

        assert first.status_code == 200
        assert second.status_code == 429
        assert "login" in second.json()["message"]
        assert other.status_code == 200

    @pytest.mark.asyncio
    async def test_exempt_paths_are_not_counted(self):
        transport = ASGITransport(app=build_app(limit=1, login_limit=1))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            codes = [(await client.get("/health")).status_code for _ in range(3)]

        assert codes == [200, 200, 200]

    @pytest.mark.asyncio
    async def test_unavailable_store_lets_requests_through(self, monkeypatch):
        policy = memory_policy("1 per 60 second")

        def broken_hit(*args, **kwargs):
            raise RedisConnectionError("connection refused")

        monkeypatch.setattr(policy.limiter.limiter, "hit", broken_hit)
        transport = ASGITransport(app=build_app(limit=1, login_limit=1, policy=policy))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            codes = [(await client.get("/api/things")).status_code for _ in range(3)]

        assert codes == [200, 200, 200]
