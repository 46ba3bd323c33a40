# ==============================================================================
# BEARER AUTHENTICATION MIDDLEWARE
# ==============================================================================
# Resolves the request principal from the Authorization header
# ==============================================================================

from __future__ import annotations

from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from basicapi.core.security import TokenValidator


class BearerAuthenticationMiddleware(BaseHTTPMiddleware):
    """
    Attaches a ``ClaimsPrincipal`` to ``request.state.principal``.

    This middleware:
        1. Extracts the Bearer token from the Authorization header
        2. Validates signature, expiry, audience and issuer
        3. Stores the authenticated principal, or the anonymous one

    It never rejects a request; authorization policies on the endpoints
    decide what an anonymous caller may do.
    """

    def __init__(self, app: ASGIApp, validator: TokenValidator) -> None:
        super().__init__(app)
        self.validator = validator

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        request.state.principal = self.validator.authenticate(
            request.headers.get("Authorization")
        )
        return await call_next(request)
