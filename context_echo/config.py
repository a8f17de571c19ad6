"""Server configuration."""

import os
from dataclasses import dataclass
from pathlib import Path

from .core.constants import (
    DEFAULT_HOST,
    DEFAULT_MEMORY_DIR,
    DEFAULT_PORT,
    EVICTION_INTERVAL_SECONDS,
    SESSION_CAPACITY,
)


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class ServerConfig:
    """Memory server configuration."""
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    memory_dir: Path = Path(DEFAULT_MEMORY_DIR)
    log_level: str = "INFO"
    session_capacity: int = SESSION_CAPACITY
    eviction_interval: float = EVICTION_INTERVAL_SECONDS
    json_response: bool = False

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create configuration from environment variables."""
        return cls(
            port=_env_number("PORT", DEFAULT_PORT, int),
            host=os.getenv("CONTEXT_ECHO_HOST", DEFAULT_HOST),
            memory_dir=Path(os.getenv("CONTEXT_ECHO_MEMORY_DIR", DEFAULT_MEMORY_DIR)),
            log_level=os.getenv("CONTEXT_ECHO_LOG_LEVEL", "INFO").upper(),
            session_capacity=_env_number("CONTEXT_ECHO_SESSION_CAPACITY", SESSION_CAPACITY, int),
            eviction_interval=_env_number("CONTEXT_ECHO_EVICTION_INTERVAL", EVICTION_INTERVAL_SECONDS, float),
            json_response=os.getenv("CONTEXT_ECHO_JSON_RESPONSE", "false").lower() in ("1", "true", "yes"),
        )
