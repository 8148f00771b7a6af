"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import os

from typing import TYPE_CHECKING

import pytest

from tests.helpers import APP_LOCATION, PROVIDERS, FakeClock
from tokenflow.config import clear_settings
from tokenflow.flow import AuthFlowController, reset_controller
from tokenflow.redirect import MemoryRedirectGateway
from tokenflow.storage import MemoryStorage


if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path


@pytest.fixture(autouse=True)
def isolated_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[None, None, None]:
    """Keep tests away from real config files, env vars and shared singletons."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("APPDATA", str(tmp_path))
    for name in list(os.environ):
        if name.startswith("TOKENFLOW_"):
            monkeypatch.delenv(name)
    clear_settings()
    reset_controller()
    yield
    clear_settings()
    reset_controller()


@pytest.fixture()
def clock() -> FakeClock:
    """A clock frozen at NOW."""
    return FakeClock()


@pytest.fixture()
def storage() -> MemoryStorage:
    """Fresh in-memory storage."""
    return MemoryStorage()


@pytest.fixture()
def gateway() -> MemoryRedirectGateway:
    """Gateway positioned on an application page."""
    return MemoryRedirectGateway(APP_LOCATION)


@pytest.fixture()
def controller(
    storage: MemoryStorage, gateway: MemoryRedirectGateway, clock: FakeClock
) -> AuthFlowController:
    """Controller configured with the test providers."""
    return AuthFlowController(
        providers=PROVIDERS,
        storage=storage,
        gateway=gateway,
        clock=clock,
    )
