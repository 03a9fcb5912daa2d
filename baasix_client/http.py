"""Authenticated HTTP request pipeline for the Baasix REST API.

Every call goes through ``BaasixHttpClient.request``:

1. Serialize query parameters.
2. Refresh the access token up front when it is about to expire. A failure
   here is logged and the call proceeds with the stored token.
3. Attach the bearer token, tenant and caller headers.
4. Execute under a per-call timeout.
5. On 401, refresh once through the shared coordinator and retry once. A
   second 401 raises ``BaasixUnauthorized`` and fires ``on_auth_error``.
6. Convert any other non-success status into ``BaasixResponseError``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import aiohttp

from .callbacks import invoke_callback
from .config import AuthMode, BaasixConfig
from .credentials import CredentialStore, StorageKey, TokenPair
from .errors import (
    BaasixClientError,
    BaasixConnectionError,
    BaasixResponseError,
    BaasixTimeout,
    BaasixUnauthorized,
    BaasixUnknownError,
)
from .refresh import RefreshCoordinator, TokenRefreshCallback

_LOGGER = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-Id"
REFRESH_PATH = "/auth/refresh"

AuthErrorCallback = Callable[[], Awaitable[None] | None]
FormFactory = Callable[[], aiohttp.FormData]


@dataclass(frozen=True)
class RawResponse:
    """Undecoded response returned when ``raw_response=True``."""

    status: int
    headers: dict[str, str]
    body: bytes

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding)

    def json(self) -> Any:
        return json.loads(self.body)


def serialize_params(params: Mapping[str, Any] | None) -> dict[str, str]:
    """Convert query parameters to strings.

    ``None`` values are dropped, mappings and sequences become compact JSON
    and booleans are lowercased.
    """
    if not params:
        return {}
    result: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            result[key] = "true" if value else "false"
        elif isinstance(value, (dict, list, tuple)):
            result[key] = json.dumps(value, separators=(",", ":"))
        else:
            result[key] = str(value)
    return result


def build_form(fields: Mapping[str, Any]) -> aiohttp.FormData:
    """Build multipart form data.

    File fields are ``(filename, content)`` or
    ``(filename, content, content_type)`` tuples; mappings and lists are
    sent as JSON strings.
    """
    form = aiohttp.FormData()
    for name, value in fields.items():
        if isinstance(value, tuple):
            filename, content, *rest = value
            form.add_field(
                name,
                content,
                filename=filename,
                content_type=rest[0] if rest else None,
            )
        elif isinstance(value, (dict, list)):
            form.add_field(name, json.dumps(value))
        else:
            form.add_field(name, value if isinstance(value, (str, bytes)) else str(value))
    return form


class BaasixHttpClient:
    """HTTP client wrapper that manages credentials for Baasix endpoints."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: BaasixConfig,
        credentials: CredentialStore,
        *,
        on_auth_error: AuthErrorCallback | None = None,
        on_token_refresh: TokenRefreshCallback | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._credentials = credentials
        self._on_auth_error = on_auth_error
        self._refresh = RefreshCoordinator(
            credentials,
            self._exchange_refresh_token,
            auth_mode=config.auth_mode,
            on_refreshed=on_token_refresh,
        )

    @property
    def config(self) -> BaasixConfig:
        return self._config

    @property
    def base_url(self) -> str:
        return self._config.url

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    @property
    def refresh_coordinator(self) -> RefreshCoordinator:
        return self._refresh

    def on_auth_error(self, callback: AuthErrorCallback | None) -> None:
        """Register the callback fired when authentication is lost."""
        self._on_auth_error = callback

    def on_token_refresh(self, callback: TokenRefreshCallback | None) -> None:
        self._refresh.on_refreshed(callback)

    async def ensure_refreshed(self) -> TokenPair:
        return await self._refresh.ensure_refreshed()

    def _url(self, path: str) -> str:
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self._config.url}{path}"

    async def _access_token(self) -> str | None:
        if self._config.token:
            return self._config.token
        if self._config.auth_mode is AuthMode.COOKIE:
            return None
        return await self._credentials.read(StorageKey.ACCESS_TOKEN)

    async def _tenant(self) -> str | None:
        if self._config.tenant_id:
            return self._config.tenant_id
        return await self._credentials.read(StorageKey.TENANT)

    async def _build_headers(
        self,
        *,
        skip_auth: bool,
        multipart: bool = False,
        extra: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        headers: dict[str, str] = {}
        if not multipart:
            headers["Content-Type"] = "application/json"
        headers.update(self._config.headers)

        tenant = await self._tenant()
        if tenant:
            headers[TENANT_HEADER] = tenant

        if not skip_auth and self._config.auth_mode is AuthMode.JWT:
            token = await self._access_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        if extra:
            headers.update(extra)
        return headers

    async def _refresh_if_expiring(self) -> None:
        if self._config.auth_mode is not AuthMode.JWT or not self._config.auto_refresh:
            return
        if not await self._credentials.is_expiring(self._config.refresh_buffer):
            return
        try:
            await self._refresh.ensure_refreshed()
        except BaasixClientError as err:
            _LOGGER.warning("Proactive token refresh failed, continuing: %s", err)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        form: FormFactory | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        skip_auth: bool = False,
        raw_response: bool = False,
    ) -> Any:
        """Execute an API call.

        Args:
            method: HTTP method.
            path: Path relative to the configured base URL.
            params: Query parameters, see ``serialize_params``.
            json: JSON body.
            form: Factory returning a fresh multipart body per attempt.
            headers: Caller headers, applied last.
            timeout: Seconds before the call is cancelled.
            skip_auth: Send no credentials and never refresh.
            raw_response: Return a ``RawResponse`` instead of decoded JSON.

        Returns:
            Decoded JSON body, ``{}`` for 204, or ``RawResponse``.

        Raises:
            BaasixTimeout: The call exceeded its timeout.
            BaasixConnectionError: No response was obtained.
            BaasixUnauthorized: Still 401 after refresh and retry.
            BaasixResponseError: Any other non-success status.
            BaasixUnknownError: The failure could not be classified.
        """
        url = self._url(path)
        query = serialize_params(params)
        total = timeout if timeout is not None else self._config.timeout
        multipart = form is not None

        if not skip_auth:
            await self._refresh_if_expiring()

        request_headers = await self._build_headers(
            skip_auth=skip_auth, multipart=multipart, extra=headers
        )

        try:
            return await self._execute(
                method,
                url,
                headers=request_headers,
                params=query,
                json_body=json,
                form=form,
                timeout=total,
                raw_response=raw_response,
            )
        except BaasixResponseError as err:
            if err.status != 401 or skip_auth or not self._config.auto_refresh:
                raise

        _LOGGER.debug("%s %s returned 401, refreshing token and retrying", method, path)
        try:
            await self._refresh.ensure_refreshed()
        except BaasixClientError:
            await self._notify_auth_error()
            raise

        retry_headers = await self._build_headers(
            skip_auth=False, multipart=multipart, extra=headers
        )
        try:
            return await self._execute(
                method,
                url,
                headers=retry_headers,
                params=query,
                json_body=json,
                form=form,
                timeout=total,
                raw_response=raw_response,
            )
        except BaasixResponseError as err:
            if err.status != 401:
                raise
            await self._notify_auth_error()
            raise BaasixUnauthorized(
                401, err.message, code=err.code, details=err.details
            ) from err

    async def _execute(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        params: dict[str, str],
        json_body: Any,
        form: FormFactory | None,
        timeout: float,
        raw_response: bool = False,
    ) -> Any:
        try:
            async with self._session.request(
                method,
                url,
                headers=headers,
                params=params or None,
                json=json_body,
                data=form() if form is not None else None,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if not 200 <= resp.status < 300:
                    raise await self._parse_error(resp)
                if raw_response:
                    return RawResponse(
                        status=resp.status,
                        headers=dict(resp.headers),
                        body=await resp.read(),
                    )
                if resp.status == 204:
                    return {}
                try:
                    return await resp.json(content_type=None)
                except ValueError as err:
                    raise BaasixUnknownError("Response body is not valid JSON") from err
        except TimeoutError as err:
            raise BaasixTimeout(f"{method} {url} timed out") from err
        except aiohttp.ClientError as err:
            raise BaasixConnectionError(f"{method} {url} failed: {err}") from err
        except OSError as err:
            raise BaasixConnectionError(f"{method} {url} failed: {err}") from err
        except TypeError as err:
            raise BaasixUnknownError(f"{method} {url} could not be sent: {err}") from err

    @staticmethod
    async def _parse_error(resp: aiohttp.ClientResponse) -> BaasixResponseError:
        data: Any = {}
        try:
            data = await resp.json(content_type=None)
        except ValueError:
            pass
        if not isinstance(data, dict):
            data = {}

        error = data.get("error") if isinstance(data.get("error"), dict) else {}
        message = (
            error.get("message")
            or data.get("message")
            or resp.reason
            or "Request failed"
        )
        details = data.get("details")
        return BaasixResponseError(
            resp.status,
            str(message),
            code=error.get("code"),
            details=details if isinstance(details, list) else None,
        )

    async def _notify_auth_error(self) -> None:
        if self._on_auth_error is not None:
            await invoke_callback(self._on_auth_error, description="Auth error callback")

    async def _exchange_refresh_token(self, refresh_token: str | None) -> dict[str, Any]:
        body = (
            {"refreshToken": refresh_token}
            if self._config.auth_mode is AuthMode.JWT
            else None
        )
        headers = {"Content-Type": "application/json", **self._config.headers}
        data = await self._execute(
            "POST",
            self._url(REFRESH_PATH),
            headers=headers,
            params={},
            json_body=body,
            form=None,
            timeout=self._config.timeout,
        )
        if not isinstance(data, dict):
            raise BaasixUnknownError("Malformed refresh response")
        return data

    async def get(self, path: str, **options: Any) -> Any:
        return await self.request("GET", path, **options)

    async def post(self, path: str, data: Any = None, **options: Any) -> Any:
        return await self.request("POST", path, json=data, **options)

    async def patch(self, path: str, data: Any = None, **options: Any) -> Any:
        return await self.request("PATCH", path, json=data, **options)

    async def put(self, path: str, data: Any = None, **options: Any) -> Any:
        return await self.request("PUT", path, json=data, **options)

    async def delete(self, path: str, **options: Any) -> Any:
        return await self.request("DELETE", path, **options)

    async def upload(self, path: str, fields: Mapping[str, Any], **options: Any) -> Any:
        """POST a multipart body; the form is rebuilt for the 401 retry."""
        return await self.request(
            "POST", path, form=lambda: build_form(fields), **options
        )
