"""Unit tests for presenting tokens on httpx requests."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import httpx
import pytest

from tests.helpers import NOW
from tokenflow.exceptions import MissingToken, UnknownProvider
from tokenflow.flow import AuthFlowController
from tokenflow.http import TokenAuth
from tokenflow.redirect import MemoryRedirectGateway
from tokenflow.types import IssuedToken


def _client(auth: TokenAuth, status_code: int = 200) -> tuple[httpx.Client, list[httpx.Request]]:
    """Client whose transport records requests and answers with ``status_code``."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code, json={"ok": status_code == 200})

    return httpx.Client(transport=httpx.MockTransport(handler), auth=auth), seen


def _store(
    controller: AuthFlowController,
    provider_id: str,
    access_token: str,
    scopes: tuple[str, ...] | None = None,
) -> None:
    controller.tokens.save(
        provider_id,
        IssuedToken(access_token=access_token, scopes=scopes, expires_at=NOW + 60, issued_at=NOW),
    )


class TestTokenAuth:
    """Tests for TokenAuth."""

    def test_bearer_header(self, controller: AuthFlowController) -> None:
        """Tokens are sent as a Bearer header by default."""
        _store(controller, "example", "at_header", ("read",))
        client, seen = _client(TokenAuth(controller, "example", ["read"]))
        response = client.get("https://api.example.com/me")
        assert response.status_code == 200
        assert seen[0].headers["Authorization"] == "Bearer at_header"
        assert "access_token" not in str(seen[0].url)

    def test_query_string(self, controller: AuthFlowController) -> None:
        """Providers configured with presenttoken=qs get a query parameter."""
        _store(controller, "fixed", "at_query")
        client, seen = _client(TokenAuth(controller, "fixed"))
        client.get("https://api.example.com/me?page=2")
        assert seen[0].url.params["access_token"] == "at_query"
        assert seen[0].url.params["page"] == "2"
        assert "Authorization" not in seen[0].headers

    def test_missing_token(self, controller: AuthFlowController, gateway: MemoryRedirectGateway) -> None:
        """No covering token raises MissingToken without navigating."""
        _store(controller, "example", "at_read", ("read",))
        client, seen = _client(TokenAuth(controller, "example", ["write"]))
        with pytest.raises(MissingToken) as exc_info:
            client.get("https://api.example.com/me")
        assert exc_info.value.provider_id == "example"
        assert exc_info.value.scopes == ["write"]
        assert seen == []
        assert gateway.navigations == []

    def test_interactive_initiates_flow(
        self, controller: AuthFlowController, gateway: MemoryRedirectGateway
    ) -> None:
        """Interactive auth starts a flow before failing."""
        client, _ = _client(TokenAuth(controller, "example", ["write"], interactive=True))
        with pytest.raises(MissingToken):
            client.get("https://api.example.com/me")
        assert len(gateway.navigations) == 1
        assert "scope=write" in gateway.navigations[0]
        assert len(controller.pending.enumerate()) == 1

    def test_unauthorized_wipes_tokens(self, controller: AuthFlowController) -> None:
        """A 401 response discards the provider's tokens."""
        _store(controller, "example", "at_revoked", ("read",))
        _store(controller, "forever", "at_other")
        client, _ = _client(TokenAuth(controller, "example", ["read"]), status_code=401)
        response = client.get("https://api.example.com/me")
        assert response.status_code == 401
        assert controller.get_access_token("example", ["read"]) is None
        assert controller.get_access_token("forever") == "at_other"

    def test_unknown_provider(self, controller: AuthFlowController) -> None:
        """Unconfigured providers raise UnknownProvider."""
        client, _ = _client(TokenAuth(controller, "nope"))
        with pytest.raises(UnknownProvider):
            client.get("https://api.example.com/me")

    def test_scope_string(self, controller: AuthFlowController) -> None:
        """Scopes may be given as a space-separated string."""
        auth = TokenAuth(controller, "example", "read write")
        assert auth.scopes == ["read", "write"]
