"""
Shared fixtures for the Pahiram auth tests.

The database is an in-memory SQLite shared through a StaticPool; APCIS is
replaced by an httpx.MockTransport whose handler each test chooses.
"""

import os

# Settings are read at import time of app.main
os.environ.setdefault("SESSION_JWT_SECRET", "test-session-secret-0123456789abcdef")
os.environ.setdefault("APCIS_LOGIN_URL", "http://apcis.test/api/login")

from typing import Any, Callable, Dict, Optional

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.pool import StaticPool

from app.auth.apcis_client import ApcisClient
from app.config import Settings
from app.db.session import create_engine, create_session_factory, init_db
from app.main import create_app


APCIS_LOGIN_URL = "http://apcis.test/api/login"


def apcis_success_body(
    apc_id: str = "2021-140001",
    email: str = "jdelacruz@student.apc.edu.ph",
    course_acronym: str = "BSCS",
    expires_at: Any = "2030-01-01 12:00:00",
    access_token: str = "apcis-access-token-1",
) -> Dict[str, Any]:
    """Body of an accepted APCIS login."""
    return {
        "status": True,
        "data": {
            "user": {
                "apc_id": apc_id,
                "first_name": "Juan",
                "last_name": "Dela Cruz",
                "email": email,
            },
            "course": {
                "course": "Bachelor of Science in Computer Science",
                "course_acronym": course_acronym,
            },
            "apcis_token": {
                "access_token": access_token,
                "expires_at": expires_at,
            },
        },
        "method": "POST",
    }


def apcis_responder(body: Dict[str, Any], status_code: int = 200) -> Callable:
    """MockTransport handler answering every request with `body`."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=body)
    return handler


def make_apcis_client(handler: Callable, timeout: float = 10.0) -> ApcisClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ApcisClient(http_client, login_url=APCIS_LOGIN_URL, timeout=timeout)


async def count_rows(session, model, **filters) -> int:
    stmt = select(func.count()).select_from(model)
    for column, value in filters.items():
        stmt = stmt.where(getattr(model, column) == value)
    result = await session.execute(stmt)
    return result.scalar_one()


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings():
    """Settings for testing"""
    return Settings(
        SESSION_JWT_SECRET="test-session-secret-0123456789abcdef",
        APCIS_LOGIN_URL=APCIS_LOGIN_URL,
        DATABASE_URL="sqlite+aiosqlite://",
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
async def engine():
    engine = create_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    factory = create_session_factory(engine)
    await init_db(engine, factory)
    return factory


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def apcis_handler():
    """
    Mutable holder for the APCIS handler used by `app`/`client`.

    Tests set `apcis_handler["handler"]` before calling /login.
    """
    return {"handler": apcis_responder(apcis_success_body())}


@pytest.fixture
def app(settings, session_factory, apcis_handler):
    """FastAPI app wired to the in-memory database and mocked APCIS"""
    app = create_app(settings)

    def dispatch(request: httpx.Request) -> httpx.Response:
        return apcis_handler["handler"](request)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(dispatch))
    app.state.app_state.session_factory = session_factory
    app.state.app_state.http_client = http_client
    app.state.app_state.apcis_client = ApcisClient(
        http_client, login_url=APCIS_LOGIN_URL, timeout=settings.APCIS_TIMEOUT_SECONDS
    )
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.app_state.http_client.aclose()


def bearer(token: Optional[str]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
