"""
config/settings.py — streamgate Runtime Settings

Merges config.yaml (structure/defaults) with environment variables and .env.
Pydantic-powered — all fields are validated and typed.

  - GatewayConfig rejects out-of-range ports and mount paths that do not
    start with '/' at parse time
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a numbered list of every problem found
  - load_settings() respects STREAMGATE_CONFIG as a fallback when no
    explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Annotated, Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from streamgate.exceptions import ConfigError

__all__ = [
    "ConfigError",
    "GatewayConfig",
    "LoggingConfig",
    "Settings",
    "load_settings",
    "get_settings",
]


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class GatewayConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3000
    path: str = "/mcp"
    # NoDecode: env values reach _split_origins raw instead of being JSON-parsed
    allowed_origins: Annotated[list[str], NoDecode] = Field(default_factory=list)
    ping_interval: float = 15.0
    max_body_bytes: int = 4 * 1024 * 1024

    @field_validator("host")
    @classmethod
    def _non_empty_host(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("gateway.host must not be empty")
        return v.strip()

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        if not (0 <= v <= 65535):
            raise ValueError(f"gateway.port must be between 0 and 65535, got {v}")
        return v

    @field_validator("path")
    @classmethod
    def _absolute_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"gateway.path must start with '/', got '{v}'")
        return v

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, v: Any) -> Any:
        # GATEWAY__ALLOWED_ORIGINS="http://a,http://b"
        if isinstance(v, str):
            return [o.strip() for o in v.split(",") if o.strip()]
        return v

    @field_validator("allowed_origins")
    @classmethod
    def _non_empty_origins(cls, v: list[str]) -> list[str]:
        bad = [o for o in v if not o.strip()]
        if bad:
            raise ValueError("gateway.allowed_origins must not contain empty entries")
        return v

    @field_validator("ping_interval")
    @classmethod
    def _positive_ping(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("gateway.ping_interval must be > 0")
        return v

    @field_validator("max_body_bytes")
    @classmethod
    def _positive_body_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("gateway.max_body_bytes must be >= 1")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = True
    json_format: Optional[bool] = None

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    streamgate runtime settings.

    Priority (highest to lowest):
      1. Init arguments (config.yaml sections passed by load_settings)
      2. Environment variables (GATEWAY__PORT=8080)
      3. .env file
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("gateway", mode="before")
    @classmethod
    def _coerce_gateway(cls, v: Any) -> Any:
        return GatewayConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def log_max_bytes(self) -> int:
        return self.logging.max_file_size_mb * 1024 * 1024

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Field validators catch type/value errors at parse time; this catches
        the combinations they cannot see on their own.
        """
        errors: list[str] = []
        gw = self.gateway

        if "*" in gw.allowed_origins:
            errors.append(
                "gateway.allowed_origins contains '*'. Origins are matched "
                "exactly; list each allowed origin instead."
            )

        for origin in gw.allowed_origins:
            if origin != "*" and "://" not in origin:
                errors.append(
                    f"gateway.allowed_origins entry '{origin}' is not an origin. "
                    f"Use scheme://host[:port], e.g. 'http://localhost:{gw.port}'."
                )

        if gw.path != "/" and gw.path.endswith("/"):
            errors.append(
                f"gateway.path '{gw.path}' ends with '/'. Paths are matched "
                f"exactly; drop the trailing slash."
            )

        if "?" in gw.path or "#" in gw.path:
            errors.append(
                f"gateway.path '{gw.path}' must not contain a query string or fragment."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nstreamgate startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in your config.yaml or environment "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"gateway", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument
      2. STREAMGATE_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("STREAMGATE_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)

    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading it from the default
    config path on first use.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            # load_settings() takes the lock itself; build the instance here.
            resolved = _resolve_config_path(None)
            data = _load_yaml(resolved)
            _singleton = Settings(**{k: v for k, v in data.items() if k in _KNOWN_SECTIONS})
        return _singleton
