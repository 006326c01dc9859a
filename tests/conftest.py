"""Shared fixtures for spacio tests: fake backend, API client, stores, clock."""

import os
from collections.abc import AsyncIterator, Generator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest

from spacio.core.api_client import SpacioAPIClient
from spacio.core.config_manager import SpacioConfig
from spacio.core.http_client import close_all_clients
from spacio.core.storage import InMemoryStore
from spacio.core.timezone_utils import ReferenceClock
from spacio.domain.models import CurrentUser
from spacio.domain.session import SessionStore
from tests.fixtures.fake_backend import BASE_URL, FakeBackend

SPACIO_ENV_VARS = (
    "SPACIO_API_URL",
    "SPACIO_REQUEST_TIMEOUT",
    "SPACIO_POLL_INTERVAL",
    "SPACIO_TIMEZONE",
    "SPACIO_STATE_DIR",
    "SPACIO_LOG_LEVEL",
    "SPACIO_AUTO_CANCEL_ON_APPROVE",
    "SPACIO_CONFIG_FILE",
    "SPACIO_DEBUG",
    "SPACIO_TEST_TIME",
)

# 2024-01-10 09:30 in Asia/Jakarta (UTC+7)
REFERENCE_UTC = datetime(2024, 1, 10, 2, 30, tzinfo=timezone.utc)


def pytest_configure(config: Any) -> None:
    """Register test markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "critical_path: Core functionality tests")


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, Any, None]:
    """Clear SPACIO_* variables so host settings cannot leak into tests.

    Variables written by code under test (``ConfigManager.load_env_file``)
    are popped directly; monkeypatch then restores the host's values.
    """
    for name in SPACIO_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    for name in SPACIO_ENV_VARS:
        os.environ.pop(name, None)


@pytest.fixture(autouse=True)
async def cleanup_shared_http_clients() -> AsyncIterator[None]:
    """Close shared httpx clients after every test."""
    yield
    await close_all_clients()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def config(tmp_path: Path) -> SpacioConfig:
    return SpacioConfig(api_base_url=BASE_URL, state_dir=tmp_path)


@pytest.fixture
def kv_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def session(kv_store: InMemoryStore) -> SessionStore:
    return SessionStore(kv_store)


@pytest.fixture
async def http_client(backend: FakeBackend) -> AsyncIterator[httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=backend.transport)
    yield client
    await client.aclose()


@pytest.fixture
def api(config: SpacioConfig, session: SessionStore, http_client: httpx.AsyncClient) -> SpacioAPIClient:
    return SpacioAPIClient(config, session=session, client=http_client)


@pytest.fixture
def clock() -> ReferenceClock:
    """Clock frozen at 2024-01-10 09:30 Jakarta time."""
    return ReferenceClock(now_fn=lambda: REFERENCE_UTC)


@pytest.fixture
def alice() -> CurrentUser:
    return CurrentUser(id=1, username="alice", full_name="Alice", email="alice@example.com")


@pytest.fixture
def bob() -> CurrentUser:
    return CurrentUser(id=2, username="bob", full_name="Bob", email="bob@example.com")
