"""Top-level Baasix client."""

from __future__ import annotations

import logging
from types import TracebackType

import aiohttp

from .auth import AuthModule, AuthStateCallback, AuthStateEvent
from .config import BaasixConfig
from .credentials import CredentialStore, StorageKey
from .http import BaasixHttpClient
from .realtime import RealtimeClient
from .storage import MemoryStorage, StorageAdapter
from .transport.socket import SocketFactory

_LOGGER = logging.getLogger(__name__)


class Baasix:
    """Wire storage, the request pipeline, auth and realtime together.

    Usage:
        async with Baasix(BaasixConfig(url="https://api.example.com")) as baasix:
            await baasix.auth.login("user@example.com", "secret")
            products = await baasix.http.get("/items/products")
            await baasix.realtime.connect()

    A session passed in stays owned by the caller; one created here is closed
    by ``close()``.
    """

    def __init__(
        self,
        config: BaasixConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        storage: StorageAdapter | None = None,
        socket_factory: SocketFactory | None = None,
        on_auth_state_change: AuthStateCallback | None = None,
    ) -> None:
        self.config = config
        self._owns_session = session is None
        self._session = session or aiohttp.ClientSession()
        self.storage = storage if storage is not None else MemoryStorage()
        self.credentials = CredentialStore(self.storage)

        self.http = BaasixHttpClient(
            self._session,
            config,
            self.credentials,
            on_auth_error=self._on_auth_error,
        )
        self.auth = AuthModule(
            self.http,
            self.credentials,
            on_auth_state_change=on_auth_state_change,
        )
        self.realtime = RealtimeClient(
            config, self.credentials, socket_factory=socket_factory
        )

    @property
    def url(self) -> str:
        return self.config.url

    async def set_tenant(self, tenant_id: str) -> None:
        """Send ``tenant_id`` with every request from now on and remember it."""
        self.config.tenant_id = tenant_id
        await self.credentials.write(StorageKey.TENANT, tenant_id)

    async def get_tenant(self) -> str | None:
        return await self.credentials.read(StorageKey.TENANT)

    async def clear_tenant(self) -> None:
        self.config.tenant_id = None
        await self.credentials.erase(StorageKey.TENANT)

    def _on_auth_error(self) -> None:
        _LOGGER.info("Authentication lost")
        self.auth.emit(AuthStateEvent.SIGNED_OUT, None)

    async def close(self) -> None:
        """Disconnect realtime and release the HTTP session if owned."""
        await self.realtime.disconnect()
        if self._owns_session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> Baasix:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
