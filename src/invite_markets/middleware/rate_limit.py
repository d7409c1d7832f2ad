import time
from dataclasses import dataclass

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

log = structlog.get_logger()


# Matched top-to-bottom; the first matching rule wins.  There are no user
# accounts, so every rule is keyed on the client IP.
RATE_LIMIT_RULES = [
    {
        "path": "/api/v1/purchase",
        "limit": 30,
        "window": 60,
        "method": "POST",
    },
    {
        "path": "/api/v1/listings",
        "limit": 10,
        "window": 60,
        "method": "POST",
    },
    {
        "path": "/api/v1/listings",
        "limit": 20,
        "window": 60,
        "method": "PATCH",
    },
    {
        "path": "/api/v1/listings",
        "limit": 20,
        "window": 60,
        "method": "DELETE",
    },
    {
        "path": "/api/v1/seller",
        "limit": 60,
        "window": 60,
    },
]

SKIP_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}


@dataclass
class RateLimitResult:
    """Holds the outcome of a sliding-window rate limit check."""

    current_count: int
    limit: int
    window: int
    reset_at: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_count)

    @property
    def exceeded(self) -> bool:
        return self.current_count > self.limit


def _find_matching_rule(path: str, method: str) -> dict | None:
    """First rule whose path prefix and method match the request."""
    for rule in RATE_LIMIT_RULES:
        if not path.startswith(rule["path"]):
            continue
        required_method = rule.get("method")
        if required_method and required_method.upper() != method.upper():
            continue
        return rule
    return None


def _get_client_ip(request: Request) -> str:
    """Client IP, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def _check_rate_limit(redis, redis_key: str, rule: dict, request: Request) -> RateLimitResult:
    """Run the sliding-window pipeline for one key and report the count."""
    now = int(time.time())
    window = rule["window"]

    pipe = redis.pipeline()
    pipe.zremrangebyscore(redis_key, 0, now - window)
    pipe.zadd(redis_key, {f"{now}:{id(request)}": now})
    pipe.zcard(redis_key)
    pipe.expire(redis_key, window)
    results = await pipe.execute()

    return RateLimitResult(
        current_count=results[2],
        limit=rule["limit"],
        window=window,
        reset_at=now + window,
    )


def _add_rate_limit_headers(response: Response, result: RateLimitResult) -> None:
    """Attach X-RateLimit-* headers to a response."""
    response.headers["X-RateLimit-Limit"] = str(result.limit)
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    response.headers["X-RateLimit-Reset"] = str(result.reset_at)


def _build_429_response(result: RateLimitResult) -> JSONResponse:
    """429 response carrying Retry-After and the rate limit headers."""
    response = JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please try again later."},
    )
    _add_rate_limit_headers(response, result)
    response.headers["Retry-After"] = str(result.window)
    return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-backed sliding window rate limiter; fails open without Redis."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        rule = _find_matching_rule(request.url.path, request.method)
        if rule is None:
            return await call_next(request)

        client_ip = _get_client_ip(request)
        redis_key = f"ratelimit:{request.method}:{rule['path']}:{client_ip}"

        try:
            redis = request.app.state.redis
            result = await _check_rate_limit(redis, redis_key, rule, request)
        except Exception as exc:
            log.warning("rate_limit_redis_error", error=str(exc), path=request.url.path)
            return await call_next(request)

        if result.exceeded:
            log.warning(
                "rate_limit_exceeded",
                path=request.url.path,
                client_ip=client_ip,
                limit=result.limit,
                count=result.current_count,
            )
            return _build_429_response(result)

        response = await call_next(request)
        _add_rate_limit_headers(response, result)
        return response
