"""Client configuration and YAML loading.

Configuration is plain data. ``load_config`` reads the same fields from a
YAML document, for example::

    url: https://api.example.com
    auth_mode: jwt
    timeout: 15
    headers:
      X-App: dashboard
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

DEFAULT_TIMEOUT = 30.0
DEFAULT_REFRESH_BUFFER = 60.0
DEFAULT_SOCKET_PATH = "/socket"


class AuthMode(Enum):
    """How credentials travel with each request."""

    JWT = "jwt"
    COOKIE = "cookie"


@dataclass
class BaasixConfig:
    """Settings shared by the HTTP pipeline and the realtime connection.

    Attributes:
        url: Base URL of the Baasix instance.
        auth_mode: ``JWT`` sends a bearer header, ``COOKIE`` relies on the
            session cookie jar.
        token: Static access token that takes precedence over stored tokens.
        headers: Extra headers sent with every request.
        timeout: Default per-request timeout in seconds.
        auto_refresh: Refresh expiring tokens and retry once on 401.
        refresh_buffer: Seconds before expiry at which a token counts as
            expiring.
        tenant_id: Tenant sent as ``X-Tenant-Id``.
        socket_url: Realtime server URL, defaults to ``url``.
        socket_path: Realtime endpoint path.
        connect_timeout: Seconds to wait for the realtime handshake.
        reconnection_attempts: Automatic reconnect tries after a drop.
        reconnection_delay: First reconnect delay in seconds.
        reconnection_delay_max: Upper bound for the reconnect delay.
    """

    url: str
    auth_mode: AuthMode = AuthMode.JWT
    token: str | None = None
    headers: dict[str, str] = field(default_factory=lambda: {})
    timeout: float = DEFAULT_TIMEOUT
    auto_refresh: bool = True
    refresh_buffer: float = DEFAULT_REFRESH_BUFFER
    tenant_id: str | None = None
    socket_url: str | None = None
    socket_path: str = DEFAULT_SOCKET_PATH
    connect_timeout: float = 20.0
    reconnection_attempts: int = 10
    reconnection_delay: float = 1.0
    reconnection_delay_max: float = 5.0

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigError("url is required")
        self.url = self.url.rstrip("/")
        if isinstance(self.auth_mode, str):
            self.auth_mode = _parse_auth_mode(self.auth_mode)

    @property
    def realtime_url(self) -> str:
        return (self.socket_url or self.url).rstrip("/")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BaasixConfig:
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        if "url" not in data:
            raise ConfigError("url is required")
        return cls(**data)


def _parse_auth_mode(value: str) -> AuthMode:
    try:
        return AuthMode(value.lower())
    except ValueError as err:
        raise ConfigError(f"Invalid auth_mode: {value}") from err


def load_config(path: Path | str) -> BaasixConfig:
    """Load a client config from a YAML file.

    Raises:
        ConfigError: If the file is missing, not valid YAML, or holds
            invalid settings.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as err:
        raise ConfigError(f"Invalid YAML in {path}") from err
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}")
    return BaasixConfig.from_dict(data)
