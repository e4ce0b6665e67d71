"""Service layer helpers (settings persistence)."""

from .settings import SecretVault, Settings, SettingsStore, redact_secret

__all__ = [
    "SecretVault",
    "Settings",
    "SettingsStore",
    "redact_secret",
]
