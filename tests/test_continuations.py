"""Unit tests for the continuation registry."""

from __future__ import annotations

import pytest

from tokenflow.continuations import ContinuationRegistry


class TestContinuationRegistry:
    """Tests for ContinuationRegistry."""

    def test_invoked_once(self) -> None:
        """A continuation runs once and is then forgotten."""
        registry = ContinuationRegistry()
        calls: list[str] = []
        registry.register("s", lambda: calls.append("s"))
        assert registry.take_and_invoke("s") is True
        assert registry.take_and_invoke("s") is False
        assert calls == ["s"]

    def test_unknown_state(self) -> None:
        """Nothing registered means nothing invoked."""
        assert ContinuationRegistry().take_and_invoke("nope") is False

    def test_removed_before_invocation(self) -> None:
        """A failing continuation is still consumed."""
        registry = ContinuationRegistry()

        def _boom() -> None:
            raise RuntimeError("boom")

        registry.register("s", _boom)
        with pytest.raises(RuntimeError):
            registry.take_and_invoke("s")
        assert "s" not in registry

    def test_not_callable(self) -> None:
        """Non-callables are rejected."""
        with pytest.raises(TypeError):
            ContinuationRegistry().register("s", "not a function")  # type: ignore[arg-type]

    def test_discard_and_clear(self) -> None:
        """discard() and clear() drop continuations without running them."""
        registry = ContinuationRegistry()
        calls: list[str] = []
        registry.register("a", lambda: calls.append("a"))
        registry.register("b", lambda: calls.append("b"))
        registry.register("c", lambda: calls.append("c"))
        registry.discard("a")
        assert len(registry) == 2
        registry.clear()
        assert len(registry) == 0
        assert calls == []
