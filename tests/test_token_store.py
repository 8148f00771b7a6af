"""Unit tests for the scope-aware token store."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import json

import pytest

from tests.helpers import NOW, FakeClock
from tokenflow.exceptions import StorageError
from tokenflow.storage import MemoryStorage
from tokenflow.token_store import TokenStore, _deserialize_token, _serialize_token
from tokenflow.types import IssuedToken


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def store(storage: MemoryStorage, clock: FakeClock) -> TokenStore:
    """Token store over fresh memory storage."""
    return TokenStore(storage, clock=clock)


def _token(access_token: str, scopes: tuple[str, ...] | None, expires_at: int | None = None) -> IssuedToken:
    return IssuedToken(access_token=access_token, scopes=scopes, expires_at=expires_at, issued_at=NOW)


# ── Serialization ───────────────────────────────────────────────────


class TestSerialization:
    """Tests for token serialization helpers."""

    def test_serialize_is_json(self) -> None:
        """Serialized output is valid JSON with list scopes."""
        data = json.loads(_serialize_token(_token("at", ("a", "b"), NOW + 5)))
        assert data["access_token"] == "at"
        assert data["scopes"] == ["a", "b"]
        assert data["expires_at"] == NOW + 5

    def test_unscoped_survives(self) -> None:
        """None scopes stay None, not an empty tuple."""
        restored = _deserialize_token(_serialize_token(_token("at", None)))
        assert restored.scopes is None

    def test_deserialize_missing_fields(self) -> None:
        """Deserialize handles missing optional fields gracefully."""
        token = _deserialize_token(json.dumps({"access_token": "at_minimal"}))
        assert token.access_token == "at_minimal"
        assert token.expires_at is None
        assert token.scopes is None
        assert token.extra == {}

    def test_deserialize_corrupt(self) -> None:
        """Corrupt records raise StorageError."""
        with pytest.raises(StorageError):
            _deserialize_token("{not json")
        with pytest.raises(StorageError):
            _deserialize_token(json.dumps({"scopes": ["a"]}))


# ── Lookup ──────────────────────────────────────────────────────────


class TestLookup:
    """Tests for TokenStore.lookup."""

    def test_miss_when_empty(self, store: TokenStore) -> None:
        """Nothing stored is a miss, not an error."""
        assert store.lookup("p", ["read"]) is None

    def test_requested_exceeds_granted(self, store: TokenStore) -> None:
        """A token granted a subset of the request misses."""
        store.save("p", _token("at", ("read",)))
        assert store.lookup("p", ["read", "write"]) is None

    def test_granted_superset(self, store: TokenStore) -> None:
        """A token granted a superset of the request hits."""
        store.save("p", _token("at", ("read", "write", "admin")))
        token = store.lookup("p", ["read", "write"])
        assert token is not None
        assert token.access_token == "at"

    def test_order_and_duplicates_ignored(self, store: TokenStore) -> None:
        """Scope order and duplicates do not affect matching."""
        store.save("p", _token("at", ("write", "read")))
        assert store.lookup("p", ["read", "read", "write"]) is not None

    def test_unscoped_matches_everything(self, store: TokenStore) -> None:
        """An unscoped token satisfies any request."""
        store.save("p", _token("at", None))
        assert store.lookup("p", ["anything", "at-all"]) is not None
        assert store.lookup("p") is not None

    def test_no_requested_scopes(self, store: TokenStore) -> None:
        """A request without scopes matches any scoped token."""
        store.save("p", _token("at", ("read",)))
        assert store.lookup("p", None) is not None
        assert store.lookup("p", []) is not None

    def test_expired_is_miss(self, store: TokenStore, clock: FakeClock) -> None:
        """Expired tokens are skipped but not deleted."""
        store.save("p", _token("at", ("read",), NOW + 10))
        clock.advance(11)
        assert store.lookup("p", ["read"]) is None
        assert len(store.enumerate("p")) == 1

    def test_no_expiry_never_expires(self, store: TokenStore, clock: FakeClock) -> None:
        """A token without expires_at is never treated as expired."""
        store.save("p", _token("at", ("read",), None))
        clock.advance(10**9)
        assert store.lookup("p", ["read"]) is not None

    def test_prefers_narrowest_live_token(self, store: TokenStore, clock: FakeClock) -> None:
        """The narrowest covering live token wins; unscoped is last resort."""
        store.save("p", _token("wide", None))
        store.save("p", _token("admin", ("read", "write", "admin")))
        store.save("p", _token("rw", ("read", "write"), NOW + 5))
        assert store.lookup("p", ["read"]).access_token == "rw"  # type: ignore[union-attr]
        clock.advance(6)
        assert store.lookup("p", ["read"]).access_token == "admin"  # type: ignore[union-attr]
        assert store.lookup("p", ["other"]).access_token == "wide"  # type: ignore[union-attr]

    def test_providers_are_isolated(self, store: TokenStore) -> None:
        """Tokens are only visible to their own provider."""
        store.save("a", _token("at_a", None))
        assert store.lookup("b") is None

    def test_provider_ids_with_separators(self, store: TokenStore) -> None:
        """Provider ids sharing a prefix do not leak into each other."""
        store.save("a:b", _token("at_ab", None))
        store.save("a", _token("at_a", ("x",)))
        assert [t.access_token for t in store.enumerate("a")] == ["at_a"]
        assert [t.access_token for t in store.enumerate("a:b")] == ["at_ab"]


# ── Save / wipe ─────────────────────────────────────────────────────


class TestSaveAndWipe:
    """Tests for TokenStore.save, wipe and enumerate."""

    def test_same_scope_set_overwrites(self, store: TokenStore) -> None:
        """Saving the same granted-scope set replaces the old token."""
        store.save("p", _token("old", ("read", "write")))
        store.save("p", _token("new", ("write", "read")))
        tokens = store.enumerate("p")
        assert [t.access_token for t in tokens] == ["new"]

    def test_different_scope_sets_coexist(self, store: TokenStore) -> None:
        """Different scope sets are stored side by side."""
        store.save("p", _token("r", ("read",)))
        store.save("p", _token("w", ("write",)))
        store.save("p", _token("u", None))
        assert sorted(t.access_token for t in store.enumerate("p")) == ["r", "u", "w"]

    def test_wipe(self, store: TokenStore) -> None:
        """wipe() removes every token for the provider only."""
        store.save("p", _token("r", ("read",)))
        store.save("p", _token("w", ("write",)))
        store.save("q", _token("q", None))
        assert store.wipe("p") == 2
        assert store.enumerate("p") == []
        assert len(store.enumerate("q")) == 1

    def test_wipe_missing(self, store: TokenStore) -> None:
        """wipe() on an empty provider removes nothing."""
        assert store.wipe("nobody") == 0

    def test_extra_fields_round_trip(self, store: TokenStore) -> None:
        """Passthrough fields survive storage."""
        token = IssuedToken(access_token="at", extra={"id_token": "x"}, issued_at=NOW)
        store.save("p", token)
        assert store.enumerate("p")[0].extra == {"id_token": "x"}
