from __future__ import annotations

from typing import Iterable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ecosystem_auth.core.config import TRUSTED_PROXY_IPS
from ecosystem_auth.core.rate_limiter import InMemoryRateLimiterService, RateLimiterService

PUBLIC_PATH_PREFIXES = (
    "/auth/login",
    "/auth/register",
    "/auth/register-company",
    "/auth/invite/",
    "/gate/auth/login",
)


class PublicRateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client throttle on the unauthenticated endpoints (login, signup, invitation lookup).

    Hits are counted per matched prefix, so ``/auth/invite/<token>`` shares one
    bucket whatever the token. ``X-Forwarded-For`` is only honoured when the
    direct peer is a configured trusted proxy.
    """

    def __init__(
        self,
        app,
        *,
        rate_limiter: RateLimiterService | None = None,
        path_prefixes: Iterable[str] = PUBLIC_PATH_PREFIXES,
        trusted_proxies: Iterable[str] = TRUSTED_PROXY_IPS,
    ) -> None:
        super().__init__(app)
        self._rate_limiter = rate_limiter or InMemoryRateLimiterService()
        # Longest first so /auth/register-company is not counted as /auth/register
        self._path_prefixes = tuple(sorted(path_prefixes, key=len, reverse=True))
        self._trusted_proxies = frozenset(trusted_proxies)

    def _scope_for(self, path: str) -> Optional[str]:
        for prefix in self._path_prefixes:
            if path.startswith(prefix):
                return prefix
        return None

    async def dispatch(self, request: Request, call_next):
        scope = self._scope_for(request.url.path)
        if request.method == "OPTIONS" or scope is None:
            return await call_next(request)

        decision = self._rate_limiter.check(
            client_key=client_key(request, self._trusted_proxies),
            scope=scope,
        )
        if not decision.allowed:
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests", "code": "RATE_LIMITED"},
                headers={
                    "Retry-After": str(decision.retry_after_seconds),
                    "X-RateLimit-Limit": str(decision.limit),
                    "X-RateLimit-Remaining": str(decision.remaining),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response


def client_key(request: Request, trusted_proxies: frozenset[str] = frozenset()) -> str:
    peer = request.client.host if request.client else "unknown"
    if peer not in trusted_proxies:
        return peer
    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    # Walk back from the nearest hop; the first untrusted address is the client.
    for hop in reversed(hops):
        if hop not in trusted_proxies:
            return hop
    return peer
