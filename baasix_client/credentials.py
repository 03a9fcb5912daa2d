"""Credential store over the external key-value storage."""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .storage import StorageAdapter

_LOGGER = logging.getLogger(__name__)


class StorageKey(Enum):
    """Names of the values the client keeps in storage."""

    ACCESS_TOKEN = "baasix_access_token"
    REFRESH_TOKEN = "baasix_refresh_token"
    TOKEN_EXPIRY = "baasix_token_expiry"
    TENANT = "baasix_tenant"
    USER = "baasix_user"


CREDENTIAL_KEYS: tuple[StorageKey, ...] = (
    StorageKey.ACCESS_TOKEN,
    StorageKey.REFRESH_TOKEN,
    StorageKey.TOKEN_EXPIRY,
    StorageKey.TENANT,
)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TokenPair:
    """Access token plus optional refresh token and expiry.

    Attributes:
        access_token: Bearer credential.
        refresh_token: Token exchanged for a new access token.
        expires_at: Absolute expiry in epoch milliseconds.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> TokenPair:
        """Build from a server auth body ``{token, refreshToken?, expiresIn?}``.

        ``expiresIn`` is a duration in seconds, converted to an absolute
        instant at receipt time.
        """
        expires_in = data.get("expiresIn")
        expires_at = now_ms() + int(expires_in * 1000) if expires_in else None
        return cls(
            access_token=data["token"],
            refresh_token=data.get("refreshToken"),
            expires_at=expires_at,
        )


class CredentialStore:
    """Thin accessor for the stored credential values.

    Every read hits the storage adapter; nothing is cached here.
    """

    def __init__(self, storage: StorageAdapter) -> None:
        self._storage = storage

    @property
    def storage(self) -> StorageAdapter:
        return self._storage

    async def read(self, name: StorageKey) -> str | None:
        result = self._storage.get(name.value)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def write(self, name: StorageKey, value: str) -> None:
        result = self._storage.set(name.value, value)
        if inspect.isawaitable(result):
            await result

    async def erase(self, name: StorageKey) -> None:
        result = self._storage.remove(name.value)
        if inspect.isawaitable(result):
            await result

    async def read_tokens(self) -> TokenPair | None:
        access_token = await self.read(StorageKey.ACCESS_TOKEN)
        if access_token is None:
            return None
        return TokenPair(
            access_token=access_token,
            refresh_token=await self.read(StorageKey.REFRESH_TOKEN),
            expires_at=await self.read_expiry(),
        )

    async def write_tokens(self, tokens: TokenPair) -> None:
        """Persist a token pair.

        Fields left as ``None`` keep their stored value.
        """
        await self.write(StorageKey.ACCESS_TOKEN, tokens.access_token)
        if tokens.refresh_token:
            await self.write(StorageKey.REFRESH_TOKEN, tokens.refresh_token)
        if tokens.expires_at is not None:
            await self.write(StorageKey.TOKEN_EXPIRY, str(tokens.expires_at))

    async def read_expiry(self) -> int | None:
        raw = await self.read(StorageKey.TOKEN_EXPIRY)
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            _LOGGER.warning("Ignoring malformed token expiry: %r", raw)
            return None

    async def is_expiring(self, buffer_seconds: float = 60.0) -> bool:
        """True when the stored token expires within ``buffer_seconds``."""
        expiry = await self.read_expiry()
        if expiry is None:
            return False
        return now_ms() >= expiry - int(buffer_seconds * 1000)

    async def clear(self) -> None:
        """Erase all credential values, whether or not they were set."""
        for name in CREDENTIAL_KEYS:
            await self.erase(name)
