"""tokenflow exception hierarchy.

All tokenflow-specific exceptions inherit from TokenFlowError, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class TokenFlowError(Exception):
    """Base exception for all tokenflow errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize tokenflow exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider_id, state, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class UnknownProvider(TokenFlowError):
    """No provider is configured under the requested id.

    Raised when initiating a flow for an unconfigured provider, or when a
    pending request names a provider that was deregistered since.
    """

    def __init__(self, message: str, provider_id: str | None = None, **context: Any) -> None:
        """Initialize unknown provider error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider_id : str, optional
            The provider id that could not be resolved.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider_id=provider_id, **context)
        self.provider_id = provider_id


class UnknownState(TokenFlowError):
    """Redirect state not found among pending requests.

    Indicates tampering, storage eviction, a replayed redirect, or a
    cross-tab race.
    """

    def __init__(self, message: str, state: str | None = None, **context: Any) -> None:
        """Initialize unknown state error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        state : str, optional
            The state token carried by the redirect.
        **context : Any
            Additional context.
        """
        super().__init__(message, state=state, **context)
        self.state = state


class MissingProvider(TokenFlowError):
    """Redirect carried no state and no fallback provider was given."""


class MalformedFragment(TokenFlowError):
    """Fragment carries the access_token marker but no usable token."""


class MissingToken(TokenFlowError):
    """No valid token is stored for a provider and scope set.

    Raised when presenting a token on an outgoing HTTP request.
    """

    def __init__(
        self,
        message: str,
        provider_id: str | None = None,
        scopes: list[str] | None = None,
        **context: Any,
    ) -> None:
        """Initialize missing token error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider_id : str, optional
            The provider the token was requested for.
        scopes : list[str], optional
            The requested scopes.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider_id=provider_id, scopes=scopes, **context)
        self.provider_id = provider_id
        self.scopes = scopes


class StorageError(TokenFlowError):
    """Storage backend failure or corrupt stored record."""

    def __init__(self, message: str, key: str | None = None, **context: Any) -> None:
        """Initialize storage error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        key : str, optional
            The storage key involved.
        **context : Any
            Additional context.
        """
        super().__init__(message, key=key, **context)
        self.key = key
