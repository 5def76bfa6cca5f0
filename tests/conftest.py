"""Shared fixtures for the portal client test suite."""

import logging
import os
import tempfile
from pathlib import Path

import httpx
import pytest

# Keep the rotating log file out of the working tree.
os.environ.setdefault("LOG_FILE", str(Path(tempfile.gettempdir()) / "portal-tests.log"))

from portal.api_client import ApiClient, ErrorReporter, RequestGuard  # noqa: E402
from portal.auth import SessionManager  # noqa: E402
from portal.logger import StructuredLogger  # noqa: E402
from portal.models.user import User  # noqa: E402
from portal.routing import Router, build_portal_routes  # noqa: E402
from portal.services.auth_service import AuthService  # noqa: E402
from portal.storage import MemoryStorage  # noqa: E402
from tests.factories import API_URL, FakeBackend, user_payload  # noqa: E402


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name="portal.tests", level=logging.DEBUG, to_file=False)


@pytest.fixture
def user() -> User:
    return User.model_validate(user_payload())


@pytest.fixture
def durable() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def ephemeral() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def session(durable, ephemeral, logger) -> SessionManager:
    return SessionManager(durable=durable, ephemeral=ephemeral, logger=logger)


@pytest.fixture
def router(session, logger) -> Router:
    return Router(session=session, routes=build_portal_routes(), logger=logger)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def api(session, router, backend, logger):
    client = ApiClient(
        base_url=API_URL,
        guard=RequestGuard(session=session, router=router, logger=logger),
        reporter=ErrorReporter(logger=logger),
        logger=logger,
        transport=httpx.MockTransport(backend),
    )
    yield client
    await client.close()


@pytest.fixture
async def auth_service(api, session, router, logger):
    service = AuthService(api=api, session=session, router=router, logger=logger)
    yield service
    await service.wait_for_background_tasks()
