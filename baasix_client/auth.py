"""Authentication endpoints and session bookkeeping."""

from __future__ import annotations

import json
import logging
from urllib.parse import urlencode
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import AuthMode
from .credentials import CredentialStore, StorageKey, TokenPair, now_ms
from .errors import BaasixClientError, BaasixNoRefreshToken, BaasixResponseError
from .http import BaasixHttpClient

_LOGGER = logging.getLogger(__name__)


class AuthStateEvent(Enum):
    """Authentication state transitions reported to the application."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    TENANT_SWITCHED = "TENANT_SWITCHED"


AuthStateCallback = Callable[[AuthStateEvent, "dict[str, Any] | None"], None]


@dataclass(frozen=True)
class AuthState:
    """Snapshot of the locally known authentication state."""

    user: dict[str, Any] | None
    is_authenticated: bool


class AuthModule:
    """Login, logout and token bookkeeping.

    Responses from login-type endpoints are the only token writes besides
    the refresh coordinator; explicit refreshes go through the coordinator
    so they cannot race refreshes started by the request pipeline.
    """

    def __init__(
        self,
        client: BaasixHttpClient,
        credentials: CredentialStore,
        *,
        on_auth_state_change: AuthStateCallback | None = None,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._auth_mode = client.config.auth_mode
        self._on_auth_state_change = on_auth_state_change
        self._current_user: dict[str, Any] | None = None
        client.on_token_refresh(self._on_token_refreshed)

    async def _on_token_refreshed(self, tokens: TokenPair) -> None:
        self.emit(AuthStateEvent.TOKEN_REFRESHED, await self.get_cached_user())

    def on_auth_state_change(self, callback: AuthStateCallback | None) -> None:
        self._on_auth_state_change = callback

    def emit(self, event: AuthStateEvent, user: dict[str, Any] | None) -> None:
        """Record ``user`` as current and notify the state callback."""
        self._current_user = user
        if self._on_auth_state_change is None:
            return
        try:
            self._on_auth_state_change(event, user)
        except Exception as err:
            _LOGGER.exception("Auth state callback error: %s", err)

    async def _store_session(self, response: dict[str, Any]) -> None:
        if self._auth_mode is AuthMode.JWT and response.get("token"):
            await self._credentials.write_tokens(TokenPair.from_response(response))
        user = response.get("user")
        if user:
            await self._credentials.write(StorageKey.USER, json.dumps(user))

    async def _clear_session(self) -> None:
        await self._credentials.clear()
        await self._credentials.erase(StorageKey.USER)
        self._current_user = None

    async def _sign_in(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post(path, body, skip_auth=True)
        await self._store_session(response)
        self.emit(AuthStateEvent.SIGNED_IN, response.get("user"))
        return response

    async def register(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self._sign_in("/auth/register", data)

    async def login(
        self, email: str, password: str, *, tenant_id: str | None = None
    ) -> dict[str, Any]:
        """Log in with email and password.

        Returns:
            Server body ``{token, refreshToken?, expiresIn?, user}``.
        """
        return await self._sign_in(
            "/auth/login",
            {"email": email, "password": password, "tenant_Id": tenant_id},
        )

    async def verify_magic_link(self, token: str) -> dict[str, Any]:
        return await self._sign_in("/auth/magiclink/verify", {"token": token})

    async def send_magic_link(
        self, email: str, *, redirect_url: str | None = None, mode: str = "link"
    ) -> None:
        """Email a magic link (``mode="link"``) or a one-time code (``"code"``)."""
        await self._client.post(
            "/auth/magiclink",
            {"email": email, "link": redirect_url, "mode": mode},
            skip_auth=True,
        )

    async def forgot_password(self, email: str, *, redirect_url: str | None = None) -> None:
        await self._client.post(
            "/auth/forgot-password",
            {"email": email, "link": redirect_url},
            skip_auth=True,
        )

    async def reset_password(self, token: str, new_password: str) -> None:
        await self._client.post(
            "/auth/reset-password",
            {"token": token, "password": new_password},
            skip_auth=True,
        )

    async def change_password(self, current_password: str, new_password: str) -> None:
        await self._client.post(
            "/auth/change-password",
            {"currentPassword": current_password, "newPassword": new_password},
        )

    async def update_profile(self, data: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.patch("/auth/me", data)
        user = response.get("data")
        await self._credentials.write(StorageKey.USER, json.dumps(user))
        self.emit(AuthStateEvent.USER_UPDATED, user)
        return user

    async def request_email_verification(self, redirect_url: str) -> None:
        await self._client.post("/auth/request-verify-email", {"link": redirect_url})

    async def verify_email(self, token: str) -> None:
        await self._client.get(
            "/auth/verify-email", params={"token": token}, skip_auth=True
        )

    async def send_invite(
        self,
        email: str,
        *,
        role_id: str,
        tenant_id: str | None = None,
        redirect_url: str | None = None,
    ) -> None:
        await self._client.post(
            "/auth/invite",
            {
                "email": email,
                "role_Id": role_id,
                "tenant_Id": tenant_id,
                "link": redirect_url,
            },
        )

    async def verify_invite(
        self, token: str, *, redirect_url: str | None = None
    ) -> dict[str, Any]:
        """Check an invitation token; returns the server's ``data`` object."""
        response = await self._client.get(
            "/auth/verify-invite",
            params={"token": token, "link": redirect_url},
            skip_auth=True,
        )
        return response.get("data", {})

    async def register_with_invite(
        self, data: dict[str, Any], invite_token: str
    ) -> dict[str, Any]:
        return await self._sign_in("/auth/register", {**data, "inviteToken": invite_token})

    async def accept_invite(self, token: str) -> dict[str, Any]:
        response = await self._client.post("/auth/accept-invite", {"token": token})
        await self._store_session(response)
        self.emit(AuthStateEvent.SIGNED_IN, response.get("user"))
        return response

    def get_oauth_url(
        self,
        provider: str,
        redirect_url: str,
        *,
        scopes: list[str] | None = None,
        state: str | None = None,
    ) -> str:
        """Build the URL that starts the OAuth flow for ``provider``."""
        params = {"redirect_url": redirect_url}
        if scopes:
            params["scopes"] = ",".join(scopes)
        if state:
            params["state"] = state
        return f"{self._client.base_url}/auth/signin/{provider}?{urlencode(params)}"

    async def handle_oauth_callback(self, token: str) -> dict[str, Any]:
        """Store a token handed back by an OAuth redirect and load the user."""
        await self._credentials.write(StorageKey.ACCESS_TOKEN, token)
        response = await self._client.get("/auth/me")
        user = response.get("data")
        if user:
            await self._credentials.write(StorageKey.USER, json.dumps(user))
        self.emit(AuthStateEvent.SIGNED_IN, user)
        return {"token": token, "user": user}

    async def logout(self) -> None:
        """Log out on the server, then clear local state regardless."""
        try:
            await self._client.get("/auth/logout")
        except BaasixClientError as err:
            _LOGGER.debug("Logout request failed, clearing locally: %s", err)
        await self._clear_session()
        self.emit(AuthStateEvent.SIGNED_OUT, None)

    async def get_user(self) -> dict[str, Any] | None:
        """Fetch the current user; a 401 clears the local session."""
        try:
            response = await self._client.get("/auth/me")
        except BaasixNoRefreshToken:
            await self._clear_session()
            return None
        except BaasixResponseError as err:
            if err.status == 401:
                await self._clear_session()
                return None
            raise
        user = response.get("data")
        self._current_user = user
        await self._credentials.write(StorageKey.USER, json.dumps(user))
        return user

    async def get_cached_user(self) -> dict[str, Any] | None:
        if self._current_user is not None:
            return self._current_user
        raw = await self._credentials.read(StorageKey.USER)
        if not raw:
            return None
        try:
            self._current_user = json.loads(raw)
        except ValueError:
            _LOGGER.warning("Ignoring malformed cached user")
            return None
        return self._current_user

    async def is_authenticated(self) -> bool:
        if self._auth_mode is AuthMode.COOKIE:
            return await self.get_cached_user() is not None

        if not await self._credentials.read(StorageKey.ACCESS_TOKEN):
            return False
        expiry = await self._credentials.read_expiry()
        if expiry is not None and now_ms() >= expiry:
            return bool(await self._credentials.read(StorageKey.REFRESH_TOKEN))
        return True

    async def get_token(self) -> str | None:
        if self._auth_mode is AuthMode.COOKIE:
            return None
        return await self._credentials.read(StorageKey.ACCESS_TOKEN)

    async def set_token(self, token: str) -> None:
        await self._credentials.write(StorageKey.ACCESS_TOKEN, token)

    async def refresh_token(self) -> TokenPair:
        """Refresh now, sharing any refresh already in flight.

        ``TOKEN_REFRESHED`` is emitted by the pipeline's refresh hook, so it
        fires once per refresh whoever started it.
        """
        return await self._client.ensure_refreshed()

    async def get_tenants(self) -> list[dict[str, Any]]:
        response = await self._client.get("/auth/tenants")
        return response.get("data", [])

    async def switch_tenant(self, tenant_id: str) -> dict[str, Any]:
        response = await self._client.post("/auth/switch-tenant", {"tenant_Id": tenant_id})
        await self._store_session(response)
        await self._credentials.write(StorageKey.TENANT, tenant_id)
        self.emit(AuthStateEvent.TENANT_SWITCHED, response.get("user"))
        return response

    async def get_state(self) -> AuthState:
        return AuthState(
            user=await self.get_cached_user(),
            is_authenticated=await self.is_authenticated(),
        )

    async def initialize(self) -> AuthState:
        """Restore the stored session; emits ``SIGNED_IN`` when there is one."""
        state = await self.get_state()
        if state.is_authenticated and state.user:
            self.emit(AuthStateEvent.SIGNED_IN, state.user)
        return state

    async def check_session(self) -> bool:
        """Ask the server whether the current session is still valid."""
        try:
            response = await self._client.get("/auth/check")
        except BaasixClientError:
            return False
        return bool(response.get("data", {}).get("valid"))
