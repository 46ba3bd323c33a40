# ==============================================================================
# CONFTEST - Pytest Fixtures and Configuration
# ==============================================================================
# Shared fixtures for all tests
# ==============================================================================

from __future__ import annotations

from pathlib import Path
from typing import AsyncGenerator, Dict, List

import pytest
import pytest_asyncio
from fastapi import APIRouter, FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel
from sqlalchemy import select

from basicapi.api.dependencies import ReaderPrincipal, SessionDep, WriterPrincipal
from basicapi.core.policies import READER_POLICY, WRITER_POLICY
from basicapi.core.security import SigningCredentials, generate_signing_credentials, issue_token
from basicapi.core.settings import Settings
from basicapi.domain_models import Pet

# Every spelling pydantic-settings would match case-insensitively is cleared
_ENV_OVERRIDES = (
    "Database", "DATABASE", "database",
    "ConnectionString", "CONNECTIONSTRING", "connectionstring",
    "DISPLAY_SQL_SCRIPTS", "display_sql_scripts",
)


# ==============================================================================
# ENVIRONMENT FIXTURES
# ==============================================================================

@pytest.fixture(autouse=True)
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run each test in its own directory so BasicApi.db never leaks."""
    monkeypatch.chdir(tmp_path)
    for name in _ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def settings() -> Settings:
    """Default settings: SQLite, no .env file."""
    return Settings(_env_file=None)


@pytest.fixture(scope="session")
def credentials() -> SigningCredentials:
    """One RSA key pair shared by the token tests."""
    return generate_signing_credentials()


# ==============================================================================
# RESOURCE ROUTER
# ==============================================================================

class PetIn(BaseModel):
    name: str
    status: str = "available"


pets_router = APIRouter(prefix="/pets", tags=["Pets"])


@pets_router.get("")
async def list_pets(principal: ReaderPrincipal, session: SessionDep) -> List[Dict]:
    result = await session.execute(select(Pet).order_by(Pet.id))
    return [pet.to_dict() for pet in result.scalars().all()]


@pets_router.post("", status_code=201)
async def add_pet(body: PetIn, principal: WriterPrincipal, session: SessionDep) -> Dict:
    pet = Pet(name=body.name, status=body.status)
    session.add(pet)
    await session.flush()
    return pet.to_dict()


@pets_router.get("/explode")
async def explode() -> Dict:
    raise RuntimeError("pet store exploded")


# ==============================================================================
# APPLICATION FIXTURES
# ==============================================================================

@pytest_asyncio.fixture
async def app(settings: Settings) -> AsyncGenerator[FastAPI, None]:
    """Application with its lifespan entered: schema provisioned."""
    from basicapi.main import create_app

    application = create_app(settings, routers=[pets_router])
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        timeout=30.0,
    ) as async_client:
        yield async_client


@pytest.fixture
def reader_token(app: FastAPI) -> str:
    return issue_token(app.state.services.signing_credentials, "reader", READER_POLICY)


@pytest.fixture
def writer_token(app: FastAPI) -> str:
    return issue_token(app.state.services.signing_credentials, "writer", WRITER_POLICY)
