# ==============================================================================
# API DEPENDENCIES - Dependency Injection
# ==============================================================================
# FastAPI dependencies for policy-gated endpoints and database sessions.
# Resource routers supplied to ``create_app`` build on these.
# ==============================================================================

from __future__ import annotations

from typing import Annotated, AsyncIterator, Callable, Awaitable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from basicapi.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
)
from basicapi.core.policies import (
    POLICY_NAMES,
    READER_POLICY,
    WRITER_POLICY,
    AuthorizationResult,
)
from basicapi.core.security import ANONYMOUS, ClaimsPrincipal


# ==============================================================================
# DATABASE DEPENDENCIES
# ==============================================================================

async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """
    Get a transactional session from the application's storage.

    Commits when the endpoint returns, rolls back when it raises.
    """
    async with request.app.state.services.storage.session() as session:
        yield session


SessionDep = Annotated[AsyncSession, Depends(get_session)]


# ==============================================================================
# AUTHORIZATION DEPENDENCIES
# ==============================================================================

def get_principal(request: Request) -> ClaimsPrincipal:
    """Principal attached by the authentication middleware."""
    return getattr(request.state, "principal", ANONYMOUS)


def require_policy(name: str) -> Callable[[Request], Awaitable[ClaimsPrincipal]]:
    """
    Build a dependency enforcing the named authorization policy.

    Args:
        name: Policy name

    Returns:
        Dependency returning the authorized principal

    Raises:
        ConfigurationError: If no such policy exists
    """
    if name not in POLICY_NAMES:
        raise ConfigurationError(f"Unknown authorization policy '{name}'")

    async def enforce_policy(request: Request) -> ClaimsPrincipal:
        policy = request.app.state.policies[name]
        principal = get_principal(request)

        result = policy.evaluate(principal)
        if result is AuthorizationResult.UNAUTHENTICATED:
            raise AuthenticationError("Not authenticated")
        if result is AuthorizationResult.FORBIDDEN:
            raise AuthorizationError(
                f"Policy '{name}' requirements not met",
                policy=name,
            )
        return principal

    return enforce_policy


# Annotated types
ReaderPrincipal = Annotated[ClaimsPrincipal, Depends(require_policy(READER_POLICY))]
WriterPrincipal = Annotated[ClaimsPrincipal, Depends(require_policy(WRITER_POLICY))]
