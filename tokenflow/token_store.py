"""Scope-aware storage of issued tokens.

Each provider holds at most one token per exact granted-scope set.
Lookups accept any live token whose granted scopes are a superset of
the requested ones; expired tokens are skipped at lookup time rather
than swept eagerly.
"""

from __future__ import annotations

import json
import time

from typing import TYPE_CHECKING
from urllib.parse import quote

from .exceptions import StorageError
from .log import mask_token, module_logger
from .types import IssuedToken


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .storage import StorageBackend


logger = module_logger("tokens")

TOKEN_PREFIX = "token:"

# Scoped keys are percent-encoded, so a literal "*" can only mean unscoped.
_UNSCOPED = "*"


def _serialize_token(token: IssuedToken) -> str:
    """Serialize an IssuedToken to JSON."""
    return json.dumps(
        {
            "access_token": token.access_token,
            "expires_at": token.expires_at,
            "scopes": list(token.scopes) if token.scopes is not None else None,
            "token_type": token.token_type,
            "state": token.state,
            "issued_at": token.issued_at,
            "extra": token.extra,
        }
    )


def _deserialize_token(data: str) -> IssuedToken:
    """Deserialize an IssuedToken from JSON."""
    try:
        obj = json.loads(data)
        scopes = obj.get("scopes")
        return IssuedToken(
            access_token=obj["access_token"],
            expires_at=obj.get("expires_at"),
            scopes=tuple(scopes) if scopes is not None else None,
            token_type=obj.get("token_type"),
            state=obj.get("state"),
            issued_at=obj.get("issued_at", int(time.time())),
            extra=dict(obj.get("extra") or {}),
        )
    except (ValueError, KeyError, TypeError) as exc:
        msg = "Corrupt token record"
        raise StorageError(msg) from exc


def _scope_key(scopes: Iterable[str] | None) -> str:
    """Canonical key fragment for a granted-scope set."""
    if scopes is None:
        return _UNSCOPED
    return quote(" ".join(sorted(set(scopes))), safe="")


def _specificity(token: IssuedToken) -> tuple[int, int]:
    """Sort key preferring the narrowest scoped token over unscoped ones."""
    if token.scopes is None:
        return (1, 0)
    return (0, len(set(token.scopes)))


class TokenStore:
    """Maps (provider id, granted-scope set) to issued tokens.

    Parameters
    ----------
    storage : StorageBackend
        The key/value collaborator (namespace ``token:<provider>:``).
    clock : callable, optional
        Returns the current epoch time; used for lazy expiry.
    """

    def __init__(self, storage: StorageBackend, clock: Callable[[], float] | None = None) -> None:
        """Initialize the token store."""
        self._storage = storage
        self._clock = clock or time.time

    @staticmethod
    def _prefix(provider_id: str) -> str:
        return f"{TOKEN_PREFIX}{quote(provider_id, safe='')}:"

    def _key(self, provider_id: str, scopes: Iterable[str] | None) -> str:
        return f"{self._prefix(provider_id)}{_scope_key(scopes)}"

    def save(self, provider_id: str, token: IssuedToken) -> None:
        """Store a token, replacing any token with the same granted scopes.

        Parameters
        ----------
        provider_id : str
            The provider that issued the token.
        token : IssuedToken
            The token to persist.
        """
        self._storage.set(self._key(provider_id, token.scopes), _serialize_token(token))
        logger.debug(
            "Saved token %s for %s (scopes=%s, expires_at=%s)",
            mask_token(token.access_token),
            provider_id,
            " ".join(token.scopes) if token.scopes is not None else "*",
            token.expires_at,
        )

    def lookup(self, provider_id: str, requested_scopes: Iterable[str] | None = None) -> IssuedToken | None:
        """Find a live token covering ``requested_scopes``.

        Parameters
        ----------
        provider_id : str
            The provider to look in.
        requested_scopes : iterable of str, optional
            Scopes the caller needs; None or empty matches any token.

        Returns
        -------
        IssuedToken or None
            The narrowest matching live token, or None on a miss.
        """
        requested = list(requested_scopes or ())
        now = self._clock()
        candidates = [
            token
            for token in self.enumerate(provider_id)
            if not token.is_expired(now) and token.covers(requested)
        ]
        if not candidates:
            return None
        return min(candidates, key=_specificity)

    def wipe(self, provider_id: str) -> int:
        """Remove every token stored for a provider.

        Returns
        -------
        int
            Number of tokens removed.
        """
        keys = self._storage.enumerate(self._prefix(provider_id))
        for key in keys:
            self._storage.remove(key)
        logger.info("Wiped %d token(s) for %s", len(keys), provider_id)
        return len(keys)

    def enumerate(self, provider_id: str) -> list[IssuedToken]:
        """List every stored token for a provider, expired ones included."""
        tokens = []
        for key in self._storage.enumerate(self._prefix(provider_id)):
            data = self._storage.get(key)
            if data is not None:
                tokens.append(_deserialize_token(data))
        return tokens
