"""Provider configuration registry."""

from __future__ import annotations

import threading

from typing import TYPE_CHECKING, Any

from .exceptions import UnknownProvider
from .log import module_logger
from .types import ProviderConfig


if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping


logger = module_logger("providers")


class ProviderRegistry:
    """Holds the configured providers, keyed by provider id.

    Parameters
    ----------
    providers : Mapping[str, ProviderConfig | Mapping], optional
        Initial configuration (see ``configure``).
    """

    def __init__(self, providers: Mapping[str, ProviderConfig | Mapping[str, Any]] | None = None) -> None:
        """Initialize the provider registry."""
        self._providers: dict[str, ProviderConfig] = {}
        self._lock = threading.Lock()
        if providers:
            self.configure(providers)

    def configure(self, providers: Mapping[str, ProviderConfig | Mapping[str, Any]]) -> None:
        """Replace the whole registry.

        Every entry is validated before anything is installed, so a bad
        entry leaves the previous configuration in place.

        Parameters
        ----------
        providers : Mapping[str, ProviderConfig | Mapping]
            Provider id to configuration. Plain mappings are validated
            into ProviderConfig.

        Raises
        ------
        pydantic.ValidationError
            If an entry is not a valid provider configuration.
        """
        validated = {
            provider_id: (
                cfg if isinstance(cfg, ProviderConfig) else ProviderConfig.model_validate(cfg)
            )
            for provider_id, cfg in providers.items()
        }
        with self._lock:
            self._providers = validated
        logger.debug("Configured providers: %s", ", ".join(validated) or "(none)")

    def get(self, provider_id: str) -> ProviderConfig:
        """Get the configuration for a provider.

        Raises
        ------
        UnknownProvider
            If no provider is configured under ``provider_id``.
        """
        with self._lock:
            config = self._providers.get(provider_id)
        if config is None:
            msg = f"Could not find configuration for provider {provider_id!r}"
            raise UnknownProvider(msg, provider_id=provider_id)
        return config

    def find_default(self) -> str | None:
        """Return the id of the default provider.

        The first entry flagged ``is_default`` wins; otherwise, when
        exactly one provider is configured, that one. Returns None when
        there is no default.
        """
        with self._lock:
            providers = dict(self._providers)
        for provider_id, config in providers.items():
            if config.is_default:
                return provider_id
        if len(providers) == 1:
            return next(iter(providers))
        return None

    def ids(self) -> list[str]:
        """Configured provider ids in configuration order."""
        with self._lock:
            return list(self._providers)

    def items(self) -> list[tuple[str, ProviderConfig]]:
        """Configured (id, config) pairs in configuration order."""
        with self._lock:
            return list(self._providers.items())

    def __contains__(self, provider_id: object) -> bool:
        with self._lock:
            return provider_id in self._providers

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)

    def __iter__(self) -> Iterator[str]:
        return iter(self.ids())
