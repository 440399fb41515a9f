"""
Rate Limiting Middleware

Per-tenant token bucket in Redis. Both deployments share the API, so one
tenant's burst must not starve the other.

The bucket is one Redis hash per tenant (tokens, updated_at) with a TTL.
If Redis is unreachable the limiter is skipped, and the outage is logged.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from typing import Optional, Tuple
import redis
import time
import logging

from carexps.config import get_settings
from carexps.utils.logging import log_security_event

logger = logging.getLogger(__name__)

EXCLUDED_PREFIXES = (
    "/docs",
    "/redoc",
    "/openapi.json",
    "/health",
)

BUCKET_TTL_SECONDS = 120


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Token bucket rate limiter per tenant. Must run inside TenantMiddleware."""

    def __init__(self, app, redis_client: Optional[redis.Redis] = None):
        super().__init__(app)
        self.settings = get_settings()
        self.redis_client = redis_client
        self.redis_available = False

        if not self.settings.RATE_LIMIT_ENABLED:
            logger.info("Rate limiting disabled by configuration")
            return

        try:
            if self.redis_client is None:
                self.redis_client = redis.from_url(
                    self.settings.REDIS_URL,
                    decode_responses=True,
                    socket_connect_timeout=5
                )
            self.redis_client.ping()
            self.redis_available = True
            logger.info("Redis connection established for rate limiting")
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.error(f"Redis connection failed, rate limiting disabled: {e}")

    async def dispatch(self, request: Request, call_next):
        if not self.redis_available:
            return await call_next(request)

        if any(request.url.path.startswith(prefix) for prefix in EXCLUDED_PREFIXES):
            return await call_next(request)

        tenant = getattr(request.state, "tenant", None)
        if not tenant:
            return await call_next(request)

        allowed, retry_after = self._check_rate_limit(tenant)

        if not allowed:
            log_security_event(
                "rate_limit_exceeded",
                {"tenant_id": tenant.id, "path": request.url.path},
                logger
            )
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Rate limit exceeded. Please try again later.",
                    "type": "rate_limit_exceeded",
                    "retry_after": retry_after
                },
                headers={"Retry-After": str(retry_after)}
            )

        return await call_next(request)

    def _check_rate_limit(self, tenant) -> Tuple[bool, int]:
        """
        Take one token from the tenant's bucket.

        Returns (allowed, retry_after_seconds).
        """
        rate_limit = tenant.rate_limit_per_minute or self.settings.RATE_LIMIT_PER_MINUTE
        burst = tenant.rate_limit_burst or self.settings.RATE_LIMIT_BURST
        refill_per_second = rate_limit / 60.0

        key = f"rate_limit:{tenant.id}"
        now = time.time()

        try:
            bucket = self.redis_client.hgetall(key)
            if bucket:
                elapsed = now - float(bucket.get("updated_at", now))
                tokens = min(burst, float(bucket.get("tokens", burst)) + elapsed * refill_per_second)
            else:
                tokens = float(burst)

            if tokens < 1:
                retry_after = int((1 - tokens) / refill_per_second) + 1
                return False, retry_after

            pipe = self.redis_client.pipeline()
            pipe.hset(key, mapping={"tokens": tokens - 1, "updated_at": now})
            pipe.expire(key, BUCKET_TTL_SECONDS)
            pipe.execute()
            return True, 0

        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return True, 0
