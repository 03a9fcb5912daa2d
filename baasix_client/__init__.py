"""Async client for the Baasix backend.

Covers the authenticated request pipeline with shared token refresh and
realtime collection subscriptions that survive reconnects.
"""

__version__ = "0.1.0"

from .auth import AuthModule, AuthState, AuthStateEvent
from .client import Baasix
from .config import AuthMode, BaasixConfig, load_config
from .credentials import CredentialStore, StorageKey, TokenPair
from .errors import (
    BaasixClientError,
    BaasixConnectionError,
    BaasixHandshakeError,
    BaasixNoRefreshToken,
    BaasixResponseError,
    BaasixTimeout,
    BaasixUnauthorized,
    BaasixUnknownError,
    ConfigError,
)
from .http import BaasixHttpClient, RawResponse
from .realtime import (
    ConnectionState,
    RealtimeChannel,
    RealtimeClient,
    RealtimeConnection,
    SubscriptionHandle,
)
from .refresh import RefreshCoordinator
from .storage import JsonFileStorage, MemoryStorage, StorageAdapter

__all__ = [
    "AuthMode",
    "AuthModule",
    "AuthState",
    "AuthStateEvent",
    "Baasix",
    "BaasixClientError",
    "BaasixConfig",
    "BaasixConnectionError",
    "BaasixHandshakeError",
    "BaasixHttpClient",
    "BaasixNoRefreshToken",
    "BaasixResponseError",
    "BaasixTimeout",
    "BaasixUnauthorized",
    "BaasixUnknownError",
    "ConfigError",
    "ConnectionState",
    "CredentialStore",
    "JsonFileStorage",
    "MemoryStorage",
    "RawResponse",
    "RealtimeChannel",
    "RealtimeClient",
    "RealtimeConnection",
    "RefreshCoordinator",
    "StorageAdapter",
    "StorageKey",
    "SubscriptionHandle",
    "TokenPair",
    "__version__",
    "load_config",
]
