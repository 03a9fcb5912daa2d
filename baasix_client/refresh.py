"""Token refresh coordination.

Refresh tokens may be single-use, so concurrent requests that all notice an
expired token must share one refresh exchange instead of racing each other.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .callbacks import invoke_callback
from .config import AuthMode
from .credentials import CredentialStore, StorageKey, TokenPair
from .errors import (
    BaasixNoRefreshToken,
    BaasixResponseError,
    BaasixUnknownError,
)
from .singleflight import SingleFlight

_LOGGER = logging.getLogger(__name__)

# Refresh endpoint answers that mean the session cannot be continued.
FATAL_REFRESH_STATUSES = frozenset({400, 401, 403})

RefreshExchange = Callable[[str | None], Awaitable[dict[str, Any]]]
TokenRefreshCallback = Callable[[TokenPair], Awaitable[None] | None]


class RefreshCoordinator:
    """Serialize token refreshes so concurrent callers share one outcome.

    Args:
        credentials: Store the refresh token is read from and the new token
            pair is written to.
        exchange: Performs the network call; receives the stored refresh
            token (``None`` in cookie mode when none is stored) and returns
            the server body.
        auth_mode: In ``JWT`` mode a missing refresh token fails immediately.
        on_refreshed: Notified with the new token pair after it is stored.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        exchange: RefreshExchange,
        *,
        auth_mode: AuthMode = AuthMode.JWT,
        on_refreshed: TokenRefreshCallback | None = None,
    ) -> None:
        self._credentials = credentials
        self._exchange = exchange
        self._auth_mode = auth_mode
        self._on_refreshed = on_refreshed
        self._flight: SingleFlight[TokenPair] = SingleFlight()

    @property
    def in_flight(self) -> bool:
        return self._flight.pending

    def on_refreshed(self, callback: TokenRefreshCallback | None) -> None:
        self._on_refreshed = callback

    async def ensure_refreshed(self) -> TokenPair:
        """Refresh the access token, joining an in-flight refresh if any.

        Raises:
            BaasixNoRefreshToken: JWT mode and no refresh token stored.
            BaasixClientError: The refresh exchange failed.
        """
        return await self._flight.run(self._refresh)

    async def _refresh(self) -> TokenPair:
        refresh_token = await self._credentials.read(StorageKey.REFRESH_TOKEN)
        if not refresh_token and self._auth_mode is AuthMode.JWT:
            await self._credentials.clear()
            raise BaasixNoRefreshToken("No refresh token available")

        _LOGGER.debug("Refreshing access token")
        try:
            data = await self._exchange(refresh_token)
        except BaasixResponseError as err:
            if err.status in FATAL_REFRESH_STATUSES:
                _LOGGER.info("Refresh rejected (%d), clearing credentials", err.status)
                await self._credentials.clear()
            raise

        try:
            tokens = TokenPair.from_response(data)
        except (KeyError, TypeError, ValueError) as err:
            raise BaasixUnknownError("Malformed refresh response") from err

        await self._credentials.write_tokens(tokens)
        _LOGGER.debug("Access token refreshed (expires_at=%s)", tokens.expires_at)
        await self._notify(tokens)
        return tokens

    async def _notify(self, tokens: TokenPair) -> None:
        if self._on_refreshed is not None:
            await invoke_callback(
                self._on_refreshed, tokens, description="Token refresh callback"
            )
