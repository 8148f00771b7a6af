"""Shared test constants and helpers."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlencode


NOW = 1_700_000_000
APP_LOCATION = "https://app.example.com/dashboard#projects"
CALLBACK = "https://app.example.com/callback"

PROVIDERS: dict[str, dict[str, Any]] = {
    "example": {
        "authorization": "https://auth.example.com/oauth/authorize",
        "client_id": "example-client",
        "redirect_uri": CALLBACK,
        "scope": ["read"],
        "isDefault": True,
    },
    "forever": {
        "authorization": "https://forever.example.org/authorize",
        "client_id": "forever-client",
        "default_lifetime": "never",
    },
    "offline": {
        "authorization": "https://offline.example.net/authorize?tenant=acme",
        "client_id": "offline-client",
        "permanent_scope": "offline",
    },
    "fixed": {
        "authorization": "https://fixed.example.net/authorize",
        "default_lifetime": 600,
        "presenttoken": "qs",
    },
}


class FakeClock:
    """Settable epoch clock."""

    def __init__(self, now: int = NOW) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def redirect_url(state: str | None = None, base: str = CALLBACK, **fields: str) -> str:
    """Build a provider redirect carrying an implicit-grant response."""
    params: dict[str, str] = {"access_token": fields.pop("access_token", "at_123")}
    if state is not None:
        params["state"] = state
    params.update(fields)
    return f"{base}#{urlencode(params)}"
