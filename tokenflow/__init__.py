"""tokenflow - client-side OAuth2 implicit-grant token management.

Initiates authorization requests, correlates provider redirects with
them through an opaque state token, resolves token expiry and scope,
and stores issued tokens for later retrieval.
"""

from __future__ import annotations

from .config import TokenFlowSettings, get_settings
from .continuations import ContinuationRegistry
from .exceptions import (
    MalformedFragment,
    MissingProvider,
    MissingToken,
    StorageError,
    TokenFlowError,
    UnknownProvider,
    UnknownState,
)
from .flow import AuthFlowController, create_controller, get_controller, reset_controller
from .http import TokenAuth
from .pending import PendingRequestStore
from .providers import ProviderRegistry
from .redirect import BrowserRedirectGateway, MemoryRedirectGateway, RedirectGateway
from .storage import (
    FileStorage,
    MemoryStorage,
    RedisStorage,
    StorageBackend,
    create_storage,
)
from .token_store import TokenStore
from .types import (
    DEFAULT_LIFETIME,
    NEVER,
    FlowState,
    IssuedToken,
    PendingAuthRequest,
    ProviderConfig,
)


__version__ = "0.1.0"

__all__ = [
    "DEFAULT_LIFETIME",
    "NEVER",
    "AuthFlowController",
    "BrowserRedirectGateway",
    "ContinuationRegistry",
    "FileStorage",
    "FlowState",
    "IssuedToken",
    "MalformedFragment",
    "MemoryRedirectGateway",
    "MemoryStorage",
    "MissingProvider",
    "MissingToken",
    "PendingAuthRequest",
    "PendingRequestStore",
    "ProviderConfig",
    "ProviderRegistry",
    "RedirectGateway",
    "RedisStorage",
    "StorageBackend",
    "StorageError",
    "TokenAuth",
    "TokenFlowError",
    "TokenFlowSettings",
    "TokenStore",
    "UnknownProvider",
    "UnknownState",
    "__version__",
    "create_controller",
    "create_storage",
    "get_controller",
    "get_settings",
    "reset_controller",
]
