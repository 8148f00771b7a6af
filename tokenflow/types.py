"""Type definitions for tokenflow.

Provider configuration, pending authorization requests, issued tokens,
and the flow state enum shared across the stores and the controller.
"""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


if TYPE_CHECKING:
    from collections.abc import Iterable


#: Lifetime sentinel meaning "tokens from this provider never expire".
NEVER: Literal["never"] = "never"

#: Fallback token lifetime in seconds when neither the response nor the
#: provider configuration says otherwise.
DEFAULT_LIFETIME = 3600

#: Fields of the implicit-grant response that map onto IssuedToken attributes.
#: Anything else in the fragment is kept in ``IssuedToken.extra``.
RESPONSE_FIELDS = frozenset({"access_token", "token_type", "state", "expires_in", "scope"})


def split_scopes(value: str | Iterable[str] | None) -> list[str]:
    """Normalise a scope value into an ordered list.

    Parameters
    ----------
    value : str or iterable of str or None
        A whitespace-separated string or a sequence of scope names.

    Returns
    -------
    list[str]
        The scope names in their original order (empty when none).
    """
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    return [s for s in value if s]


class ProviderConfig(BaseModel):
    """Configuration for a single OAuth2 provider.

    Accepts both the snake_case field names and the camel-cased keys used
    by browser-side configuration objects (``isDefault``, ``presenttoken``).

    Attributes
    ----------
    authorization : str
        The provider's authorization endpoint.
    client_id : str or None
        Client id sent with the authorization request.
    redirect_uri : str or None
        Redirect URI sent with the authorization request.
    scope : list[str]
        Default scope list, inherited by redirects that carry no state.
    default_lifetime : int, "never" or None
        Token lifetime in seconds, or ``NEVER`` for permanent tokens.
    permanent_scope : str or None
        A scope whose presence implies the token never expires.
    is_default : bool
        Whether this provider is the fallback for state-less redirects.
    present_token : {"header", "qs"}
        How the token is attached to outgoing requests.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    authorization: str
    client_id: str | None = None
    redirect_uri: str | None = None
    scope: list[str] = Field(default_factory=list)
    default_lifetime: int | Literal["never"] | None = None
    permanent_scope: str | None = None
    is_default: bool = Field(default=False, alias="isDefault")
    present_token: Literal["header", "qs"] = Field(default="header", alias="presenttoken")

    @field_validator("authorization")
    @classmethod
    def _require_authorization(cls, v: str) -> str:
        """Reject an empty authorization endpoint."""
        if not v or not v.strip():
            msg = "authorization endpoint must not be empty"
            raise ValueError(msg)
        return v.strip()

    @field_validator("scope", mode="before")
    @classmethod
    def _parse_scope(cls, v: Any) -> list[str]:
        """Accept a space-separated string (from env vars or TOML) or a list."""
        return split_scopes(v)

    @field_validator("default_lifetime", mode="before")
    @classmethod
    def _parse_lifetime(cls, v: Any) -> Any:
        """Map ``false`` and ``"never"`` (any case) onto the NEVER sentinel."""
        if v is False:
            return NEVER
        if isinstance(v, str):
            if v.strip().lower() == NEVER:
                return NEVER
            return int(v)
        return v

    @field_validator("default_lifetime")
    @classmethod
    def _positive_lifetime(cls, v: int | str | None) -> int | str | None:
        """Numeric lifetimes must be positive."""
        if isinstance(v, int) and v <= 0:
            msg = "default_lifetime must be a positive number of seconds"
            raise ValueError(msg)
        return v

    @property
    def never_expires(self) -> bool:
        """Whether the provider's lifetime policy is the NEVER sentinel."""
        return self.default_lifetime == NEVER


@dataclass(frozen=True)
class PendingAuthRequest:
    """An authorization request waiting for its redirect.

    Attributes
    ----------
    state : str
        The opaque correlation token sent to the provider.
    provider_id : str
        The provider the request was sent to.
    scopes : tuple[str, ...]
        Requested scopes (empty means the provider default).
    location : str or None
        The page location to restore once the redirect is processed.
    has_continuation : bool
        Whether a continuation was registered for this state.
    created_at : float
        Unix timestamp when the request was initiated.
    """

    state: str
    provider_id: str
    scopes: tuple[str, ...] = ()
    location: str | None = None
    has_continuation: bool = False
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class IssuedToken:
    """An access token issued through the implicit grant.

    Attributes
    ----------
    access_token : str
        The raw access token.
    expires_at : int or None
        Epoch second after which the token is treated as absent. ``None``
        means no local expiry tracking, not "already expired".
    scopes : tuple[str, ...] or None
        Granted scopes in provider order. ``None`` means unscoped, which
        satisfies any scope request.
    token_type : str or None
        The ``token_type`` reported by the provider.
    state : str or None
        The state token the response was correlated with, if any.
    issued_at : int
        Epoch second at which the redirect was processed.
    extra : dict[str, str]
        Unrecognised response fields, passed through verbatim.
    """

    access_token: str
    expires_at: int | None = None
    scopes: tuple[str, ...] | None = None
    token_type: str | None = None
    state: str | None = None
    issued_at: int = field(default_factory=lambda: int(time.time()))
    extra: dict[str, str] = field(default_factory=dict)

    def is_expired(self, now: float | None = None) -> bool:
        """Check whether the token is past its expiry.

        Parameters
        ----------
        now : float, optional
            Current epoch time (defaults to ``time.time()``).
        """
        if self.expires_at is None:
            return False
        if now is None:
            now = time.time()
        return now > self.expires_at

    def covers(self, requested: Iterable[str] | None) -> bool:
        """Check whether the granted scopes satisfy a request.

        Order and duplicates are ignored; an unscoped token covers
        everything.
        """
        if self.scopes is None:
            return True
        return set(requested or ()) <= set(self.scopes)


class FlowState(str, Enum):
    """State of a single implicit-grant flow."""

    IDLE = "idle"
    PENDING = "pending"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
