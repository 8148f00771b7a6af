"""Settings for tokenflow, built on pydantic-settings.

Sources, lowest precedence first:

1. built-in defaults;
2. ``[tool.tokenflow]`` in ``./pyproject.toml``;
3. ``./tokenflow.toml``;
4. the user file (``~/.config/tokenflow/config.toml``, or
   ``%APPDATA%/tokenflow/config.toml`` on Windows);
5. the file named by ``TOKENFLOW_CONFIG_FILE``;
6. ``TOKENFLOW_*`` environment variables, with ``__`` between nested
   names (``TOKENFLOW_STORAGE__BACKEND=file``);
7. keyword arguments passed to ``TokenFlowSettings``.
"""

from __future__ import annotations

import os
import sys
import tomllib

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    InitSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .log import module_logger
from .types import DEFAULT_LIFETIME, ProviderConfig


logger = module_logger("config")


def _user_config_path() -> Path:
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "~"), "tokenflow", "config.toml").expanduser()
    return Path("~/.config/tokenflow/config.toml").expanduser()


def _config_sources() -> list[tuple[Path, tuple[str, ...]]]:
    """Existing config files, lowest precedence first.

    Each file is paired with the key path of the table holding tokenflow
    settings inside it.
    """
    candidates: list[tuple[Path, tuple[str, ...]]] = [
        (Path("pyproject.toml"), ("tool", "tokenflow")),
        (Path("tokenflow.toml"), ()),
        (_user_config_path(), ()),
    ]
    explicit = os.environ.get("TOKENFLOW_CONFIG_FILE")
    if explicit:
        candidates.append((Path(explicit).expanduser(), ()))
    return [(path, table) for path, table in candidates if path.is_file()]


def _load_toml_config() -> dict[str, Any]:
    """Read every config file and merge them into one mapping."""
    merged: dict[str, Any] = {}
    for path, table in _config_sources():
        try:
            data: Any = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", path, exc)
            continue
        for key in table:
            data = data.get(key, {}) if isinstance(data, dict) else {}
        logger.debug("Loaded settings from %s", path)
        merged = _deep_merge(merged, data)
    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``, table by table."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        merged[key] = (
            _deep_merge(current, value)
            if isinstance(current, dict) and isinstance(value, dict)
            else value
        )
    return merged


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {"redis_url"}

_REDACTED = "********"


def _display_value(name: str, value: Any) -> str:
    """One-line rendering of a settings value for ``show``."""
    if name in _SENSITIVE_FIELDS:
        return _REDACTED
    text = " ".join(value) if isinstance(value, list) else str(value)
    return text if len(text) <= 50 else text[:47] + "..."


class StorageSettings(BaseSettings):
    """Storage backend for pending requests and tokens.

    Environment prefix: TOKENFLOW_STORAGE__
    Example: TOKENFLOW_STORAGE__BACKEND=redis
    """

    model_config = SettingsConfigDict(
        env_prefix="TOKENFLOW_STORAGE__",
        extra="ignore",
    )

    backend: Literal["memory", "file", "redis"] = Field(
        default="memory",
        description=(
            "Storage backend: memory, file, or redis. Use file or redis when the "
            "redirect may be processed by a different process than the one that "
            "initiated the flow."
        ),
    )
    path: str = Field(
        default="~/.config/tokenflow/storage.json",
        description="JSON file used by the file backend",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the redis backend",
    )
    prefix: str = Field(
        default="tokenflow",
        description="Key prefix for the redis backend",
    )
    pool_size: int = Field(default=10, ge=1)


class TokenFlowSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: TOKENFLOW_

    Providers can be given as a JSON object in ``TOKENFLOW_PROVIDERS`` or
    as ``[providers.<id>]`` tables in TOML:

    .. code-block:: toml

        [tool.tokenflow.providers.example]
        authorization = "https://auth.example.com/oauth/authorize"
        client_id = "my-client"
        scope = "read write"
        default_lifetime = "never"
    """

    model_config = SettingsConfigDict(
        env_prefix="TOKENFLOW_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    providers: dict[str, ProviderConfig] = Field(default_factory=dict)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    default_lifetime: int = Field(
        default=DEFAULT_LIFETIME,
        gt=0,
        description="Fallback token lifetime in seconds",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    debug: bool = Field(
        default=False,
        description="Shortcut for log_level=DEBUG",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # TOML files sit between environment variables and built-in defaults
        toml_settings = InitSettingsSource(settings_cls, init_kwargs=_load_toml_config())
        return (init_settings, env_settings, dotenv_settings, toml_settings, file_secret_settings)

    @property
    def effective_log_level(self) -> str:
        """The log level after applying the debug shortcut."""
        return "DEBUG" if self.debug else self.log_level

    def show(self) -> str:
        """Render the resolved settings for display, secrets masked."""
        sections: list[tuple[str, dict[str, Any]]] = [
            (
                "General",
                {"default_lifetime": self.default_lifetime, "log_level": self.effective_log_level},
            ),
            ("Storage", self.storage.model_dump()),
        ]
        sections.extend(
            (f"Provider [{provider_id}]", config.model_dump())
            for provider_id, config in self.providers.items()
        )

        lines = ["tokenflow Configuration", "=" * 60]
        for title, values in sections:
            lines.extend(["", title, "-" * 40])
            lines.extend(f"  {name:20} = {_display_value(name, value)}" for name, value in values.items())
        if not self.providers:
            lines.extend(["", "(no providers configured)"])
        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> TokenFlowSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return TokenFlowSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> TokenFlowSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
