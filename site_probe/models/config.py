"""Models for the resolved run configuration."""

from collections.abc import Mapping, Sequence
from typing import Literal

from pydantic import Field, SecretStr

from site_probe.models.base import Model

type DepthLevel = Literal["shallow", "medium", "deep"]
type BrowserName = Literal["chromium", "firefox", "webkit"]

DEPTH_HOPS: Mapping[DepthLevel, int] = {
    "shallow": 1,
    "medium": 2,
    "deep": 3,
}
"""Maximum number of link hops from the base URL for each depth level."""


class ViewportConfig(Model):
    """Browser viewport used for a session."""

    name: str = "desktop"
    width: int = 1280
    height: int = 720
    device_scale_factor: float = 1.0
    is_mobile: bool = False


class AuthConfig(Model):
    """Login flow used by the auth tester and to authenticate sessions."""

    login_url: str
    username: str
    password: SecretStr
    username_selector: str = (
        "input[type=email], input[name=email], input[name=username]"
    )
    password_selector: str = "input[type=password]"
    submit_selector: str = "button[type=submit]"
    success_url: str | None = Field(
        default=None, description="URL prefix expected after a successful login"
    )
    session_key: str | None = Field(
        default=None, description="localStorage key holding the auth token"
    )


class PerformanceThresholds(Model):
    """Upper bounds for page timings, in milliseconds (CLS is unitless)."""

    lcp: float = 2500.0
    tti: float = 3800.0
    cls: float = 0.1
    fcp: float = 1800.0
    ttfb: float = 800.0


class ApiEndpoint(Model):
    """REST contract checked directly by the API tester."""

    name: str
    path: str
    method: str = "GET"
    body: Mapping[str, object] | None = None
    expected_status: int = 200
    required_keys: Sequence[str] = ()


class SelectorConfig(Model):
    """Selectors used to recognise outcomes in the page."""

    success: Sequence[str] = (
        "[role=status]",
        ".toast-success",
        "[data-sonner-toast][data-type=success]",
        ".alert-success",
    )
    validation_error: Sequence[str] = (
        ":invalid",
        "[aria-invalid=true]",
        ".error",
        ".field-error",
        "[role=alert]",
    )
    error_page: Sequence[str] = ("[data-error-page]", ".error-page", "#error-page")
    ignore: Sequence[str] = ()


class TestConfig(Model):
    """Fully resolved configuration of a test run. Immutable during the run."""

    __test__ = False

    base_url: str
    preset: str | None = None
    environment: str = "local"
    depth: DepthLevel = "medium"
    max_depth: int | None = Field(
        default=None, description="Explicit hop bound overriding the depth level"
    )
    max_pages: int = 50
    include_patterns: Sequence[str] = ()
    exclude_patterns: Sequence[str] = ()
    viewports: Sequence[ViewportConfig] = (ViewportConfig(),)
    auth: AuthConfig | None = None
    browser: BrowserName = "chromium"
    headless: bool = True
    workers: int = 1
    check_timeout: float = 30.0
    run_timeout: float | None = None
    retries: int = 2
    retry_backoff: float = 0.5
    navigation_delay: float = 0.0
    accessibility: bool = True
    performance: bool = True
    edge_functions: bool = True
    screenshots: bool = True
    visual: bool = False
    api_testing: bool = False
    console_monitoring: bool = True
    network_monitoring: bool = True
    allow_destructive: bool = False
    allow_form_submission: bool = True
    performance_thresholds: PerformanceThresholds = PerformanceThresholds()
    selectors: SelectorConfig = SelectorConfig()
    routes_dir: str | None = None
    edge_functions_dir: str | None = None
    edge_function_base_url: str | None = None
    edge_function_api_key: SecretStr | None = None
    api_endpoints: Sequence[ApiEndpoint] = ()
    output_dir: str = "./test-results"

    @property
    def hop_limit(self) -> int:
        """Maximum discovery depth, counted in link hops from the base URL."""
        if self.max_depth is not None:
            return self.max_depth
        return DEPTH_HOPS[self.depth]
