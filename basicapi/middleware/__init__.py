# ==============================================================================
# MIDDLEWARE PACKAGE INITIALIZATION
# ==============================================================================

"""
Middleware Module
=================

Request pipeline stages, outermost first:
- Fault boundary (log and re-raise unhandled failures)
- Bearer authentication (resolve the request principal)
"""

from basicapi.middleware.authentication import BearerAuthenticationMiddleware
from basicapi.middleware.fault_boundary import FaultBoundaryMiddleware

__all__ = [
    "BearerAuthenticationMiddleware",
    "FaultBoundaryMiddleware",
]
