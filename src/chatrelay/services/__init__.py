"""Service layer helpers (settings persistence, secrets)."""

from .secrets import SecretVault
from .settings import (
    Settings,
    SettingsStore,
    env_overrides,
    redact_secret,
    validate_settings,
)

__all__ = [
    "SecretVault",
    "Settings",
    "SettingsStore",
    "env_overrides",
    "redact_secret",
    "validate_settings",
]
