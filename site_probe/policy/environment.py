"""Named target environments and the settings they contribute to a run."""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

from site_probe.errors import ConfigError
from site_probe.models.base import Model

log = logging.getLogger(__name__)

URL_VAR = "SITE_PROBE_URL"
USERNAME_VAR = "SITE_PROBE_USERNAME"
PASSWORD_VAR = "SITE_PROBE_PASSWORD"
API_KEY_VAR = "SITE_PROBE_API_KEY"


class EnvironmentProfile(Model):
    """Where an environment lives and which variables hold its secrets."""

    name: str
    base_url: str | None = None
    url_var: str = URL_VAR
    username_var: str = USERNAME_VAR
    password_var: str = PASSWORD_VAR
    api_key_var: str = API_KEY_VAR
    login_path: str = "/login"
    read_only: bool = False


BUILTIN_PROFILES: Mapping[str, EnvironmentProfile] = {
    "local": EnvironmentProfile(name="local", base_url="http://localhost:5173"),
    "staging": EnvironmentProfile(
        name="staging", url_var="SITE_PROBE_STAGING_URL"
    ),
    "production": EnvironmentProfile(
        name="production", url_var="SITE_PROBE_PRODUCTION_URL", read_only=True
    ),
}


@dataclass(frozen=True, kw_only=True)
class EnvironmentManager:
    """Resolves a named environment into configuration overrides.

    Unknown names are accepted as custom environments that take their URL
    and credentials from the generic ``SITE_PROBE_*`` variables.
    """

    profiles: Mapping[str, EnvironmentProfile] = field(
        default_factory=lambda: dict(BUILTIN_PROFILES)
    )

    def profile(self, name: str) -> EnvironmentProfile:
        """Return the profile of ``name``, creating a custom one if needed."""
        if name in self.profiles:
            return self.profiles[name]
        log.debug("Using custom environment %s", name)
        return EnvironmentProfile(name=name)

    def resolve(
        self, name: str, env: Mapping[str, str] | None = None
    ) -> Mapping[str, Any]:
        """Build the configuration layer contributed by environment ``name``.

        Args:
            name: Environment name, built-in or custom
            env: Variables to read, the process environment when omitted

        Returns:
            Overrides for `resolve_config`. Read-only environments disable
            destructive clicks and form submission; explicit overrides
            applied later can still enable them.

        Raises:
            ConfigError: If only one of username and password is set

        """
        env = os.environ if env is None else env
        profile = self.profile(name)
        overrides: dict[str, Any] = {"environment": profile.name}

        base_url = env.get(profile.url_var) or env.get(URL_VAR) or profile.base_url
        if base_url:
            overrides["base_url"] = base_url

        username = env.get(profile.username_var)
        password = env.get(profile.password_var)
        if bool(username) != bool(password):
            raise ConfigError(
                f"Set both {profile.username_var} and {profile.password_var}, "
                "or neither"
            )
        if username and password and base_url:
            overrides["auth"] = {
                "login_url": urljoin(base_url, profile.login_path),
                "username": username,
                "password": password,
            }

        api_key = env.get(profile.api_key_var)
        if api_key:
            overrides["edge_function_api_key"] = api_key

        if profile.read_only:
            overrides["allow_destructive"] = False
            overrides["allow_form_submission"] = False
        return overrides
