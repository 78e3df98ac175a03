"""
Unit test conftest — isolate gateway configuration from the developer's or
CI environment so Settings() only sees what a test explicitly provides.
"""
import pytest

_CONFIG_ENV_PREFIXES = ("GATEWAY__", "LOGGING__")
_CONFIG_ENV_VARS = ["STREAMGATE_CONFIG", "GATEWAY", "LOGGING"]


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove gateway/logging env vars, disable .env loading and reset the
    settings singleton for every test."""
    import os

    for var in list(os.environ):
        if var.upper().startswith(_CONFIG_ENV_PREFIXES):
            monkeypatch.delenv(var, raising=False)
    for var in _CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import streamgate.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    monkeypatch.setattr(settings_module, "_singleton", None)
