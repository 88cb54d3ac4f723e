"""Auth tester: login with the configured credentials and with a wrong password."""

import logging
import secrets
import time
from collections.abc import Sequence
from dataclasses import dataclass
from urllib.parse import urljoin

from site_probe.driver.base import PageSession
from site_probe.errors import TesterError
from site_probe.models.config import AuthConfig, TestConfig
from site_probe.models.discovery import DiscoveredPage, DiscoveryGraph
from site_probe.models.result import (
    CategorizedError,
    InteractionEvidence,
    TestResult,
    TestType,
)
from site_probe.testers.base import Tester, elapsed_ms
from site_probe.urls import canonicalize_url

log = logging.getLogger(__name__)

SESSION_KEY_SCRIPT = "(key) => window.localStorage.getItem(key)"


@dataclass(frozen=True, kw_only=True)
class AuthTester(Tester[AuthConfig]):
    """Exercises the login flow.

    The wrong-password attempt runs first so the session is still signed
    out; it passes when the application does not authenticate. The real
    login passes when the browser ends on the success URL, or holds the
    configured session key, or at least leaves the login page.
    """

    test_type = TestType.AUTH
    scope = "run"

    @classmethod
    def enabled(cls, config: TestConfig) -> bool:
        return config.auth is not None

    def artifacts(
        self, target: DiscoveredPage | DiscoveryGraph, config: TestConfig
    ) -> Sequence[AuthConfig]:
        if not isinstance(target, DiscoveryGraph) or config.auth is None:
            return []
        return [config.auth]

    def artifact_id(self, artifact: AuthConfig) -> str:
        return "login"

    def check_name(self, artifact: AuthConfig) -> str:
        return "Login"

    def sub_checks(self, artifact: AuthConfig) -> Sequence[str | None]:
        return ["invalid-credentials", "valid-credentials"]

    async def run(
        self,
        session: PageSession,
        page: DiscoveredPage | None,
        artifact: AuthConfig,
        config: TestConfig,
    ) -> Sequence[TestResult]:
        wrong_password = f"wrong-{secrets.token_hex(6)}"
        rejected = await self.attempt(
            session, artifact, config, wrong_password, expect_success=False
        )
        accepted = await self.attempt(
            session,
            artifact,
            config,
            artifact.password.get_secret_value(),
            expect_success=True,
        )
        return [rejected, accepted]

    async def attempt(
        self,
        session: PageSession,
        auth: AuthConfig,
        config: TestConfig,
        password: str,
        *,
        expect_success: bool,
    ) -> TestResult:
        """Log in with ``password`` and compare the outcome to the expectation."""
        started = time.monotonic()
        sub_check = "valid-credentials" if expect_success else "invalid-credentials"
        name = (
            "Login succeeds with valid credentials"
            if expect_success
            else "Login is refused with a wrong password"
        )
        login_url = canonicalize_url(urljoin(config.base_url, auth.login_url))

        navigation = await session.navigate(login_url, config.check_timeout)
        if navigation.status is not None and navigation.status >= 400:
            raise TesterError(
                f"Login page {login_url} returned HTTP {navigation.status}",
                classification="critical",
            )
        await session.fill(auth.username_selector, auth.username)
        await session.fill(auth.password_selector, password)
        await session.click(auth.submit_selector, config.check_timeout)

        authenticated = await self.authenticated(session, auth, config, login_url)
        error = None
        if authenticated and not expect_success:
            error = CategorizedError(
                classification="critical",
                message="A wrong password was accepted",
            )
        elif not authenticated and expect_success:
            error = CategorizedError(
                classification="functional",
                message=f"Login did not authenticate (ended on {session.url})",
            )
        log.debug("%s: authenticated=%s", name, authenticated)
        return TestResult(
            check_id=self.check_id(None, auth, sub_check),
            type=self.test_type,
            status="pass" if error is None else "fail",
            name=name,
            duration_ms=elapsed_ms(started),
            error=error,
            evidence=InteractionEvidence(
                selector=auth.submit_selector, final_url=session.url
            ),
        )

    async def authenticated(
        self, session: PageSession, auth: AuthConfig, config: TestConfig, login_url: str
    ) -> bool:
        """Whether the session looks signed in."""
        current = canonicalize_url(session.url)
        if auth.success_url is not None:
            expected = canonicalize_url(urljoin(config.base_url, auth.success_url))
            return current.startswith(expected)
        if auth.session_key is not None:
            token = await session.evaluate(SESSION_KEY_SCRIPT, auth.session_key)
            return bool(token)
        return current != login_url
