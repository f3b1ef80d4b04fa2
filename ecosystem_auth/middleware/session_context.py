from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware

from ecosystem_auth.core.errors import AuthenticationError
from ecosystem_auth.core.request_context import set_request_context
from ecosystem_auth.services.session_provider import extract_bearer_token
from ecosystem_auth.services.tokens import verify_token


class SessionContextMiddleware(BaseHTTPMiddleware):
    """Decode a bearer token, if any, into ``request.state.session_claims`` for logging.

    Never rejects: enforcement belongs to the route dependencies.
    """

    async def dispatch(self, request, call_next):
        request.state.session_claims = None

        token = extract_bearer_token(request)
        if token:
            try:
                claims = verify_token(token)
            except AuthenticationError:
                claims = None
            request.state.session_claims = claims
            if claims is not None:
                set_request_context(
                    user_id=str(claims.user_id),
                    company_id=str(claims.company_id) if claims.company_id is not None else None,
                )

        return await call_next(request)
