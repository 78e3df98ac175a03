from streamgate.config.settings import (
    ConfigError,
    GatewayConfig,
    LoggingConfig,
    Settings,
    get_settings,
    load_settings,
)

__all__ = [
    "ConfigError",
    "GatewayConfig",
    "LoggingConfig",
    "Settings",
    "get_settings",
    "load_settings",
]
