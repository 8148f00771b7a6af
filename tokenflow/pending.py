"""Read-once store for authorization requests awaiting their redirect."""

from __future__ import annotations

import json
import time

from typing import TYPE_CHECKING

from .exceptions import StorageError
from .log import module_logger
from .types import PendingAuthRequest


if TYPE_CHECKING:
    from .storage import StorageBackend


logger = module_logger("pending")

PENDING_PREFIX = "pending:"


def _serialize_request(request: PendingAuthRequest) -> str:
    """Serialize a PendingAuthRequest to JSON."""
    return json.dumps(
        {
            "state": request.state,
            "provider_id": request.provider_id,
            "scopes": list(request.scopes),
            "location": request.location,
            "has_continuation": request.has_continuation,
            "created_at": request.created_at,
        }
    )


def _deserialize_request(data: str) -> PendingAuthRequest:
    """Deserialize a PendingAuthRequest from JSON."""
    try:
        obj = json.loads(data)
        return PendingAuthRequest(
            state=obj["state"],
            provider_id=obj["provider_id"],
            scopes=tuple(obj.get("scopes") or ()),
            location=obj.get("location"),
            has_continuation=bool(obj.get("has_continuation", False)),
            created_at=obj.get("created_at", time.time()),
        )
    except (ValueError, KeyError, TypeError) as exc:
        msg = "Corrupt pending request record"
        raise StorageError(msg) from exc


class PendingRequestStore:
    """Maps state tokens to pending authorization requests.

    There is deliberately no ``get``: the only way to read a request is
    ``take``, which removes it in the same atomic step.

    Parameters
    ----------
    storage : StorageBackend
        The key/value collaborator (namespace ``pending:``).
    """

    def __init__(self, storage: StorageBackend) -> None:
        """Initialize the pending request store."""
        self._storage = storage

    @staticmethod
    def _key(state: str) -> str:
        return f"{PENDING_PREFIX}{state}"

    def put(self, state: str, request: PendingAuthRequest) -> None:
        """Persist a pending request under its state token.

        Raises
        ------
        StorageError
            If a request is already pending under ``state``.
        """
        if not self._storage.add(self._key(state), _serialize_request(request)):
            msg = "State token is already in use by a pending request"
            raise StorageError(msg, key=self._key(state))
        logger.debug("Saved pending request for %s (state %s)", request.provider_id, state)

    def take(self, state: str) -> PendingAuthRequest | None:
        """Return and remove the request pending under ``state``.

        Returns
        -------
        PendingAuthRequest or None
            The request, or None if nothing is (any longer) pending.
        """
        data = self._storage.take(self._key(state))
        if data is None:
            return None
        return _deserialize_request(data)

    def discard(self, state: str) -> None:
        """Drop a pending request without reading it."""
        self._storage.remove(self._key(state))

    def enumerate(self) -> list[str]:
        """List the state tokens of every pending request.

        Requests whose redirect never came back stay here until discarded.
        """
        return [key[len(PENDING_PREFIX) :] for key in self._storage.enumerate(PENDING_PREFIX)]

    def __contains__(self, state: object) -> bool:
        return isinstance(state, str) and self._storage.get(self._key(state)) is not None
