"""Fixtures for integration tests."""

from collections.abc import Callable
from pathlib import Path

import pytest

from site_probe.driver.base import RequestEvent
from site_probe.testing.fake_driver import FakeDriver, FakePage, html_page

HOME = "https://app.test/"
FEATURES = "https://app.test/features"
PRICING = "https://app.test/pricing"
DOCS = "https://app.test/docs"
DOCS_API = "https://app.test/docs/api"
SETTINGS = "https://app.test/settings"

SEND_EMAIL_URL = "https://app.test/functions/v1/send-email"


def nav(*hrefs: str) -> str:
    """Render a navigation bar linking ``hrefs``."""
    links = "".join(f'<a href="{href}">{href}</a>' for href in hrefs)
    return f"<nav>{links}</nav>"


@pytest.fixture
def site_pages() -> dict[str, FakePage]:
    """Pages of a small marketing site with a cycle and a deep branch."""
    return {
        HOME: FakePage(
            html=html_page(nav("/features", "/pricing", "/docs"), title="Home"),
            requests=[
                RequestEvent(
                    url=f"{SEND_EMAIL_URL}?source=home",
                    method="post",
                    resource_type="fetch",
                    status=200,
                )
            ],
        ),
        FEATURES: FakePage(html=html_page(nav("/", "/pricing"), title="Features")),
        PRICING: FakePage(html=html_page(nav("/", "/features"), title="Pricing")),
        DOCS: FakePage(html=html_page(nav("/docs/api"), title="Docs")),
        DOCS_API: FakePage(html=html_page(nav("/docs"), title="API")),
        SETTINGS: FakePage(html=html_page("<h1>Settings</h1>", title="Settings")),
    }


@pytest.fixture
def driver(site_pages: dict[str, FakePage]) -> FakeDriver:
    """Serve ``site_pages``."""
    return FakeDriver(pages=site_pages)


@pytest.fixture
def write_source(tmp_path: Path) -> Callable[[str, str], Path]:
    """Return a function writing files into an application source tree."""

    def _write(relative: str, content: str) -> Path:
        path = tmp_path / "app" / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    return _write
