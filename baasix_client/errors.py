"""Client error types for Baasix API interactions."""

from __future__ import annotations

from typing import Any


class BaasixClientError(Exception):
    """Base error for Baasix client failures."""


class BaasixTimeout(BaasixClientError):
    """Timeout while communicating with the server."""


class BaasixConnectionError(BaasixClientError):
    """Network failure before a response was obtained."""


class BaasixHandshakeError(BaasixClientError):
    """WebSocket handshake failed."""


class BaasixNoRefreshToken(BaasixClientError):
    """A token refresh was needed but no refresh token is stored."""


class BaasixUnknownError(BaasixClientError):
    """Failure that could not be classified."""


class ConfigError(BaasixClientError):
    """Invalid or unreadable client configuration."""


class BaasixResponseError(BaasixClientError):
    """Non-success HTTP response from the server."""

    def __init__(
        self,
        status: int,
        message: str,
        *,
        code: str | None = None,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.code = code
        self.details = details or []

    @property
    def is_retryable(self) -> bool:
        """Whether the same request may succeed later (5xx and 429)."""
        return self.status >= 500 or self.status == 429

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "status": self.status,
            "code": self.code,
            "details": self.details,
        }


class BaasixUnauthorized(BaasixResponseError):
    """Request still rejected with 401 after a token refresh and retry."""
