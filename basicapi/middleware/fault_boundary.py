# ==============================================================================
# REQUEST FAULT BOUNDARY MIDDLEWARE
# ==============================================================================
# Logs unhandled request failures with full detail, then re-raises them
# ==============================================================================

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class FaultBoundaryMiddleware(BaseHTTPMiddleware):
    """
    Outermost application middleware.

    Any exception escaping the rest of the pipeline is logged with its
    traceback and re-raised unchanged, so the host's server error handling
    still produces the response. Nothing is swallowed or rewritten.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        try:
            return await call_next(request)
        except Exception:
            logger.exception(f"{request.method} {request.url.path} failed")
            raise
