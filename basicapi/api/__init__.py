# ==============================================================================
# API PACKAGE INITIALIZATION
# ==============================================================================

from basicapi.api.dependencies import (
    ReaderPrincipal,
    SessionDep,
    WriterPrincipal,
    get_principal,
    require_policy,
)
from basicapi.api.health import router as health_router

__all__ = [
    "ReaderPrincipal",
    "SessionDep",
    "WriterPrincipal",
    "get_principal",
    "require_policy",
    "health_router",
]
