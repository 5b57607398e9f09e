"""Centralized configuration — Pydantic BaseSettings with TOML + dotenv sources.

Environment variables override both files. They carry a ``SHELLGATE_``
prefix and use ``__`` as the nested delimiter
(e.g. ``SHELLGATE_SESSION__PTY_DRAIN_GRACE=2``); the prefix keeps the
login shell's own ``$SHELL`` from being read as the ``[shell]`` section.

Priority (highest wins): init args > env vars > .env > config.toml

The listening port has one extra, flat override: the variable named by
``server.port_env`` (``SHELLGATE_PORT`` by default), resolved at startup by
:func:`resolve_listen_port`.

Usage::

    from shellgate.config import get_settings

    s = get_settings()
    print(s.shell.path)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

RESERVED_PORT_MAX = 1024


class ConfigError(Exception):
    """Invalid startup configuration. Fatal: the server does not start."""


# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models — reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class ServerConfig(_StrictModel):
    host: str = "0.0.0.0"
    port: int = 2222
    port_env: str = "SHELLGATE_PORT"
    host_key_path: Path | None = None  # None → ephemeral key per process
    allow_port_forwarding: bool = True
    agent_forwarding: bool = True


class ShellConfig(_StrictModel):
    path: str = "bash"
    install_missing: bool = True  # try the distro package manager if absent


class AuthConfig(_StrictModel):
    # Missing file disables authentication; an empty file is an error.
    authorized_keys_path: Path = Path("/var/shellgate/authorized_keys")


class SessionConfig(_StrictModel):
    pty_drain_grace: float = 1.0  # seconds to wait for PTY output after exit
    copy_chunk_size: int = 32768

    @field_validator("pty_drain_grace")
    @classmethod
    def validate_grace(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("pty_drain_grace must be positive")
        return v

    @field_validator("copy_chunk_size")
    @classmethod
    def clamp_chunk_size(cls, v: int) -> int:
        return max(1024, v)


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_prefix="SHELLGATE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    server: ServerConfig = ServerConfig()
    shell: ShellConfig = ShellConfig()
    auth: AuthConfig = AuthConfig()
    session: SessionConfig = SessionConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


# ---------------------------------------------------------------------------
# Port resolution
# ---------------------------------------------------------------------------


def resolve_listen_port(settings: Settings, environ: Mapping[str, str] | None = None) -> int:
    """Return the port to listen on, honouring the ``server.port_env`` override.

    Raises ConfigError for a non-numeric value or a reserved (<= 1024) port.
    """
    env = os.environ if environ is None else environ
    raw = env.get(settings.server.port_env)
    if raw is None:
        return settings.server.port

    try:
        port = int(raw)
    except ValueError:
        raise ConfigError(f"{raw} is not a valid port number") from None

    if port <= RESERVED_PORT_MAX:
        raise ConfigError(f"{port} is a reserved port")
    if port > 65535:
        raise ConfigError(f"{port} is not a valid port number")
    return port


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
