# ==============================================================================
# MAIN APPLICATION - FastAPI Entry Point
# ==============================================================================
# Service configuration, request pipeline, schema lifespan and runner
# ==============================================================================

from __future__ import annotations

import logging
import sys
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Iterable, Optional, Sequence

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from basicapi import __version__
from basicapi.api.health import router as health_router
from basicapi.core.exceptions import AppException, ConfigurationError
from basicapi.core.policies import AuthorizationPolicy, build_authorization_policies
from basicapi.core.security import (
    BEARER_SCHEME,
    SigningCredentials,
    TokenValidator,
    generate_signing_credentials,
)
from basicapi.core.settings import Settings, get_settings, load_settings
from basicapi.database.backends import BackendConfiguration, select_backend
from basicapi.database.factory import StorageContext, create_storage
from basicapi.database.lifecycle import SchemaLifecycleManager
from basicapi.middleware import BearerAuthenticationMiddleware, FaultBoundaryMiddleware

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format=settings.LOG_FORMAT,
    )


# ==============================================================================
# SERVICE CONFIGURATION
# ==============================================================================

@dataclass
class ServiceContainer:
    """
    Process-wide services built once at startup.

    Attributes:
        settings: Loaded settings
        backend: Validated backend choice
        storage: Engine and session factory
        signing_credentials: RSA key pair for bearer tokens
        token_validator: Validates inbound bearer tokens
        policies: Authorization policies by name
        lifecycle: Schema provision/teardown manager
    """
    settings: Settings
    backend: BackendConfiguration
    storage: StorageContext
    signing_credentials: SigningCredentials
    token_validator: TokenValidator
    policies: Dict[str, AuthorizationPolicy]
    lifecycle: SchemaLifecycleManager


def configure_services(settings: Settings) -> ServiceContainer:
    """
    Build the dependency set for the service.

    The backend is selected first so a bad configuration stops startup
    before any other state is built.

    Args:
        settings: Loaded settings

    Returns:
        ServiceContainer

    Raises:
        ConfigurationError: Unsupported backend, missing connection string
            or violated backend connection flags
    """
    backend = select_backend(settings.Database, settings.ConnectionString)

    credentials = generate_signing_credentials()
    token_validator = TokenValidator(credentials)
    policies = build_authorization_policies()

    storage = create_storage(backend, settings)
    lifecycle = SchemaLifecycleManager(
        storage,
        display_sql_scripts=settings.DISPLAY_SQL_SCRIPTS,
    )

    return ServiceContainer(
        settings=settings,
        backend=backend,
        storage=storage,
        signing_credentials=credentials,
        token_validator=token_validator,
        policies=policies,
        lifecycle=lifecycle,
    )


def configure_pipeline(app: FastAPI, services: ServiceContainer) -> None:
    """
    Install the request pipeline.

    The last middleware added is the outermost, so the fault boundary wraps
    authentication and routing.
    """
    app.add_middleware(BearerAuthenticationMiddleware, validator=services.token_validator)
    app.add_middleware(FaultBoundaryMiddleware)


# ==============================================================================
# LIFESPAN MANAGEMENT
# ==============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    - Startup: provision the schema; failure aborts startup
    - Shutdown: run the teardown action registered by provisioning, then
      close the connection pool
    """
    services: ServiceContainer = app.state.services
    settings = services.settings

    logger.info(f"Starting {settings.APP_NAME} v{__version__}")
    logger.info(f"Database: {services.backend.backend.value}")

    async with AsyncExitStack() as shutdown:
        shutdown.push_async_callback(services.storage.dispose)

        teardown = await services.lifecycle.provision()
        shutdown.push_async_callback(teardown)

        logger.info(f"{settings.APP_NAME} ready")
        yield

        logger.info("Shutting down application...")

    logger.info("Application shutdown complete")


# ==============================================================================
# APPLICATION FACTORY
# ==============================================================================

def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
    routers: Iterable[APIRouter] = (),
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings (defaults to environment settings)
        services: Prebuilt services (defaults to ``configure_services``)
        routers: Resource routers to mount

    Returns:
        Configured FastAPI application instance

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    settings = settings or get_settings()
    services = services or configure_services(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.policies = services.policies

    register_exception_handlers(app)

    for router in routers:
        app.include_router(router)
    app.include_router(health_router)

    configure_pipeline(app, services)
    return app


# ==============================================================================
# EXCEPTION HANDLERS
# ==============================================================================

def register_exception_handlers(app: FastAPI) -> None:
    """Register application exception handlers."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request,
        exc: AppException,
    ) -> JSONResponse:
        """Handle application exceptions."""
        headers = {"WWW-Authenticate": BEARER_SCHEME} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=headers,
        )


# ==============================================================================
# RUNNER
# ==============================================================================

def main(argv: Optional[Sequence[str]] = None) -> None:
    """
    Run the service with uvicorn.

    Args:
        argv: Command-line options (defaults to ``sys.argv[1:]``), e.g.
            ``--Database=PostgreSQL --ConnectionString="Host=..."``
    """
    import uvicorn

    settings = load_settings(sys.argv[1:] if argv is None else argv)
    configure_logging(settings)

    try:
        app = create_app(settings)
    except ConfigurationError as e:
        logger.critical(f"Invalid configuration: {e.message}")
        raise

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
