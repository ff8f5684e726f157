import hashlib
import time
from dataclasses import dataclass
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from diceraja.core.errors import RateLimitError, app_error_handler
from diceraja.core.logging import get_request_id
from diceraja.core.metrics import record_rate_limit_block
from diceraja.core.ratelimit import InMemoryRateLimiter, RateLimitConfig

# Credential endpoints get half the default budget
AUTH_MUTATION_PATHS = ("/api/auth/login", "/api/auth/register", "/api/auth/register-gamer")


@dataclass
class RoutePolicy:
    category: str
    per_minute: int
    burst: int


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Token-bucket rate limiting middleware (opt-in via settings)."""

    def __init__(self, app, *, config: Optional[RateLimitConfig] = None, time_fn: Optional[Callable[[], float]] = None):
        super().__init__(app)
        self.config = config or RateLimitConfig.from_settings()
        self.limiter = InMemoryRateLimiter(time_fn=time_fn or time.monotonic)

    def _policy_for_request(self, request: Request) -> RoutePolicy:
        method = request.method.upper()
        if method == "POST" and request.url.path in AUTH_MUTATION_PATHS:
            # Separate bucket from other writes
            return RoutePolicy(
                category="auth",
                per_minute=max(1, self.config.per_minute_default // 2),
                burst=max(1, self.config.burst_default // 2),
            )
        category = "mutation" if method in {"POST", "PUT", "PATCH", "DELETE"} else "read"
        return RoutePolicy(
            category=category,
            per_minute=self.config.per_minute_default,
            burst=self.config.burst_default,
        )

    def _client_key(self, request: Request, category: str) -> str:
        auth = request.headers.get("Authorization")
        if auth:
            # Never keep raw tokens in memory keys
            digest = hashlib.sha256(auth.encode("utf-8")).hexdigest()[:16]
            return f"token:{digest}:{category}"

        ip = request.headers.get("x-forwarded-for") or (request.client.host if request.client else "unknown")
        return f"ip:{ip}:{category}"

    async def dispatch(self, request: Request, call_next):
        if not self.config.enabled:
            return await call_next(request)

        policy = self._policy_for_request(request)
        key = self._client_key(request, policy.category)

        if self.limiter.allow(key, per_minute=policy.per_minute, burst=policy.burst):
            return await call_next(request)

        rid = getattr(request.state, "request_id", None) or get_request_id()
        record_rate_limit_block(policy.category)

        response = await app_error_handler(
            request,
            RateLimitError("Too many requests, please slow down", request_id=rid),
        )
        retry_after = max(1, int(60 / max(1, policy.per_minute)))
        response.headers["Retry-After"] = str(retry_after)
        response.headers["X-RateLimit-Limit"] = str(policy.per_minute)
        response.headers["X-RateLimit-Remaining"] = "0"
        return response
