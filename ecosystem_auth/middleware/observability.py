from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ecosystem_auth.core.metrics import request_metrics
from ecosystem_auth.core.request_context import clear_request_context, set_request_context

logger = logging.getLogger(__name__)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        status_code = 500
        endpoint = request.url.path
        method = request.method
        response = None

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            company_id = _extract_company_id(request)
            user_id = _extract_user_id(request)
            duration_ms = round((time.perf_counter() - start) * 1000, 2)

            set_request_context(company_id=company_id, user_id=user_id)
            request_metrics.observe(
                endpoint=endpoint,
                method=method,
                status_code=status_code,
                duration_ms=duration_ms,
                company_id=company_id,
            )

            logger.info(
                "request completed",
                extra={
                    "request_id": request_id,
                    "company_id": company_id,
                    "user_id": user_id,
                    "endpoint": endpoint,
                    "method": method,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                },
            )

            if response is not None:
                response.headers["X-Request-ID"] = request_id

            clear_request_context()


def _caller(request: Request):
    identity = getattr(request.state, "identity", None)
    if identity is not None:
        return identity
    return getattr(request.state, "session_claims", None)


def _extract_company_id(request: Request) -> str | None:
    caller = _caller(request)
    company_id = getattr(caller, "company_id", None)
    return str(company_id) if company_id is not None else None


def _extract_user_id(request: Request) -> str | None:
    caller = _caller(request)
    user_id = getattr(caller, "user_id", None)
    return str(user_id) if user_id is not None else None
