"""Rate limiting middleware.

Counting is delegated to slowapi's ``Limiter`` and its ``limits`` fixed-window
backend. Requests are keyed ``user:<id>`` when a principal is already
attached to the request, ``ip:<address>`` otherwise. Login paths get their
own stricter policy keyed by IP. Counters live in Redis when ``REDIS_URL``
is set so every worker shares them.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import math
import time
from typing import TYPE_CHECKING, Any

from limits import RateLimitItem, parse
from redis.exceptions import RedisError
from slowapi import Limiter
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from nutriplan.models.common import error_body

if TYPE_CHECKING:
    from fastapi import FastAPI
    from starlette.requests import Request
    from starlette.responses import Response
    from starlette.types import ASGIApp

    from nutriplan.core.config import MiddlewareConfig, Settings

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests, please try again later"
LOGIN_RATE_LIMIT_MESSAGE = "Too many login attempts, please try again later"
MEMORY_STORAGE_URI = "memory://"


def get_user_id_or_ip(request: Request) -> str:
    """Key by authenticated user when known, else by client IP."""
    user = getattr(request.state, "user", None)
    if user:
        if isinstance(user, dict):
            user_id = user.get("user_id") or user.get("uid")
        else:
            user_id = getattr(user, "subject_id", None)
        if user_id:
            return f"user:{user_id}"
    return get_ip_only(request)


def get_ip_only(request: Request) -> str:
    if request.client is None:
        return "ip:127.0.0.1"
    return f"ip:{request.client.host}"


def rate_limit_string(max_requests: int, window_ms: int) -> str:
    """``RATE_LIMIT_MAX`` and ``RATE_LIMIT_WINDOW_MS`` as a ``limits`` string."""
    seconds = max(1, math.ceil(window_ms / 1000))
    return f"{max_requests} per {seconds} second"


@dataclass
class RateLimitPolicy:
    """A slowapi limiter bound to the limit it enforces and its request key."""

    limiter: Limiter
    limit: str
    key_func: Callable[[Request], str] = get_user_id_or_ip
    scope: str = "default"
    message: str = RATE_LIMIT_MESSAGE
    item: RateLimitItem = field(init=False)

    def __post_init__(self) -> None:
        self.item = parse(self.limit)

    def hit(self, key: str) -> tuple[bool, int]:
        """Count a hit; returns ``(allowed, retry_after_seconds)``."""
        backend = self.limiter.limiter
        if backend.hit(self.item, self.scope, key):
            return True, 0
        reset_time, _ = backend.get_window_stats(self.item, self.scope, key)
        return False, max(1, math.ceil(reset_time - time.time()))


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """Reject clients over their request budget with 429 and ``Retry-After``."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        policy: RateLimitPolicy,
        login_policy: RateLimitPolicy | None = None,
        login_paths: tuple[str, ...] = (),
        exempt_paths: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.policy = policy
        self.login_policy = login_policy
        self.login_paths = login_paths
        self.exempt_paths = set(exempt_paths or [])
        logger.info("RateLimitingMiddleware initialized - %s", policy.limit)

    @staticmethod
    def create_limiter(
        default_limits: list[str],
        storage_uri: str | None = None,
        *,
        key_func: Callable[[Request], str] = get_user_id_or_ip,
        storage_options: dict[str, Any] | None = None,
    ) -> Limiter:
        return Limiter(
            key_func=key_func,
            default_limits=default_limits,
            storage_uri=storage_uri or MEMORY_STORAGE_URI,
            storage_options=storage_options or {},
            strategy="fixed-window",
        )

    @classmethod
    def get_default_policy(cls, settings: Settings, **kwargs: Any) -> RateLimitPolicy:
        limit = rate_limit_string(settings.rate_limit_max, settings.rate_limit_window_ms)
        return RateLimitPolicy(
            cls.create_limiter([limit], settings.redis_url or None, **kwargs),
            limit,
        )

    @classmethod
    def get_auth_policy(cls, settings: Settings, **kwargs: Any) -> RateLimitPolicy:
        limit = rate_limit_string(settings.login_rate_limit_max, settings.rate_limit_window_ms)
        return RateLimitPolicy(
            cls.create_limiter([limit], settings.redis_url or None, key_func=get_ip_only, **kwargs),
            limit,
            key_func=get_ip_only,
            scope="login",
            message=LOGIN_RATE_LIMIT_MESSAGE,
        )

    @staticmethod
    def _too_many(message: str, retry_after: int) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content=error_body(message, retryAfter=retry_after),
            headers={"Retry-After": str(retry_after)},
        )

    def _check(self, policy: RateLimitPolicy, request: Request) -> JSONResponse | None:
        key = policy.key_func(request)
        try:
            allowed, retry_after = policy.hit(key)
        except RedisError:
            # Counting is best effort; an unavailable Redis lets traffic through
            logger.warning("Rate limit store unavailable, allowing request", exc_info=True)
            return None
        if allowed:
            return None
        logger.warning(
            "Rate limit (%s) exceeded for %s on %s", policy.scope, key, request.url.path
        )
        return self._too_many(policy.message, retry_after)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in self.exempt_paths or request.method == "OPTIONS":
            return await call_next(request)

        if self.login_policy is not None and path in self.login_paths:
            rejected = self._check(self.login_policy, request)
            if rejected is not None:
                return rejected

        rejected = self._check(self.policy, request)
        if rejected is not None:
            return rejected

        return await call_next(request)


def setup_rate_limiting(
    app: FastAPI, settings: Settings, config: MiddlewareConfig
) -> RateLimitPolicy:
    """Install the rate limiting middleware and expose the limiter on ``app.state``."""
    policy = RateLimitingMiddleware.get_default_policy(settings)
    app.state.limiter = policy.limiter
    app.add_middleware(
        RateLimitingMiddleware,
        policy=policy,
        login_policy=RateLimitingMiddleware.get_auth_policy(settings),
        login_paths=config.login_paths,
        exempt_paths=config.exempt_paths,
    )
    logger.info(
        "Rate limiting enabled (%s, storage=%s)",
        policy.limit,
        "redis" if settings.redis_url else "memory",
    )
    return policy
