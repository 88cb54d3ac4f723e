"""Fixtures for module tests using WireMock testcontainers."""

from collections.abc import AsyncGenerator, Generator

import aiohttp
import pytest
from testcontainers.core import testcontainers_config
from wiremock.client import Mappings
from wiremock.constants import Config
from wiremock.testing.testcontainer import WireMockContainer


@pytest.fixture(scope="session", autouse=True)
def _disable_ryuk() -> None:
    """Disable the extra cleanup instance, we use contexts to clean containers."""
    testcontainers_config.ryuk_disabled = True


@pytest.fixture(scope="session")
def wiremock_server() -> Generator[WireMockContainer, None, None]:
    """Start WireMock container using wiremock's testcontainer support."""
    with WireMockContainer(secure=False) as wm:
        Config.base_url = wm.get_url("__admin")
        yield wm
        print(wm.get_logs())


@pytest.fixture
def backend_url(wiremock_server: WireMockContainer) -> Generator[str, None, None]:
    """Base URL of the stubbed backend, with no mappings left from other tests."""
    Mappings.delete_all_mappings()
    yield wiremock_server.get_base_url()
    Mappings.delete_all_mappings()


@pytest.fixture
async def http() -> AsyncGenerator[aiohttp.ClientSession, None]:
    """Create an HTTP session."""
    async with aiohttp.ClientSession() as session:
        yield session
