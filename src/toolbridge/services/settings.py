"""Persisted configuration for the bridge and its OpenAI-compatible engine.

Settings live in ``~/.toolbridge/settings.json``. The API key never touches
disk in plaintext: it is sealed with a Fernet key kept next to the settings
file. Values resolve in this order, later sources winning::

    defaults < settings file < explicit overrides < TOOLBRIDGE_* environment
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..ai.client import ClientSettings

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

_HOME_DIR = Path.home() / ".toolbridge"
_SCHEMA_VERSION = 1
_SEALED_KEY_FIELD = "api_key_ciphertext"
_TOKEN_PREFIX = "fernet"
_TRUTHY = frozenset({"1", "true", "yes", "on", "debug"})


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY


def _parse_int(raw: str) -> int:
    return int(raw.strip(), 10)


# Environment variable -> (settings field, converter)
_ENV_FIELDS: Mapping[str, tuple[str, Callable[[str], Any]]] = {
    "TOOLBRIDGE_API_KEY": ("api_key", str),
    "TOOLBRIDGE_BASE_URL": ("base_url", str),
    "TOOLBRIDGE_MODEL": ("model", str),
    "TOOLBRIDGE_ORGANIZATION": ("organization", str),
    "TOOLBRIDGE_INSTRUCTIONS": ("instructions", str),
    "TOOLBRIDGE_DEBUG_LOGGING": ("debug_logging", _parse_bool),
    "TOOLBRIDGE_MAX_TOKENS": ("max_tokens", _parse_int),
    "TOOLBRIDGE_TOOL_TIMEOUT_MS": ("tool_timeout_ms", _parse_int),
    "TOOLBRIDGE_REQUEST_TIMEOUT": ("request_timeout", float),
    "TOOLBRIDGE_TEMPERATURE": ("temperature", float),
}


@dataclass(slots=True)
class Settings:
    """Engine endpoint, generation defaults and diagnostics switches."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    temperature: float = 0.5
    max_tokens: int = 1000
    tool_timeout_ms: int = 30_000
    max_tool_iterations: int = 8
    instructions: str | None = None
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    debug_logging: bool = False

    def client_settings(self) -> ClientSettings:
        """Project the engine-facing subset onto :class:`ClientSettings`."""

        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            organization=self.organization,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_min_seconds=self.retry_min_seconds,
            retry_max_seconds=self.retry_max_seconds,
            max_tool_iterations=self.max_tool_iterations,
            default_headers=dict(self.default_headers) or None,
            metadata={str(key): str(value) for key, value in self.metadata.items()} or None,
            debug_logging=self.debug_logging,
        )

    def generation_defaults(self) -> dict[str, Any]:
        """Option defaults for tool-enabled generation, in caller option names."""

        return {
            "maxTokens": self.max_tokens,
            "temperature": self.temperature,
            "toolTimeout": self.tool_timeout_ms,
        }


_DEFAULTS = Settings()
_OPTIONAL_TEXT_FIELDS = frozenset({"organization", "instructions"})


class SecretVault:
    """Seals secrets with a Fernet key stored on disk.

    Sealed values look like ``fernet:<token>``. The key file is created on
    first use with owner-only permissions.
    """

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_HOME_DIR / "settings.key")
        self._cipher: Fernet | None = None

    @property
    def strategy(self) -> str:
        return _TOKEN_PREFIX

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{_TOKEN_PREFIX}:{token}"

    def decrypt(self, sealed: str | None) -> str:
        """Return the plaintext for ``sealed``.

        Raises:
            ValueError: If the token was not produced with this vault's key.
        """
        if not sealed:
            return ""
        prefix, _, token = sealed.partition(":")
        if not token:
            prefix, token = _TOKEN_PREFIX, sealed
        if prefix != _TOKEN_PREFIX:
            LOGGER.warning("Secret sealed with unsupported backend %r; leaving it as-is", prefix)
            return sealed
        try:
            return self._fernet().decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Secret cannot be decrypted with the current key") from exc

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._read_or_create_key())
        return self._cipher

    def _read_or_create_key(self) -> bytes:
        path = self._key_path
        if path.exists():
            return path.read_bytes().strip()
        path.parent.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        staging = path.with_suffix(".tmp")
        staging.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(staging, 0o600)
        staging.replace(path)
        LOGGER.debug("Created secret key at %s", path)
        return key


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or (_HOME_DIR / "settings.json")
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Resolve settings from disk, ``overrides`` and the environment.

        A missing, unreadable or malformed file yields defaults; ``None``
        override values are ignored.
        """
        settings = self._from_payload(self._read())
        if overrides:
            settings = _merge(settings, overrides, source="caller")
        environment = _environment_values()
        if environment:
            settings = _merge(settings, environment, source="environment")
        return settings

    def save(self, settings: Settings) -> Path:
        """Write ``settings`` atomically and return the file path."""

        body = json.dumps(self._to_payload(settings), indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        staging = self._path.with_suffix(".tmp")
        staging.write_text(body, encoding="utf-8")
        staging.replace(self._path)
        LOGGER.debug("Wrote settings to %s", self._path)
        return self._path

    def _to_payload(self, settings: Settings) -> Dict[str, Any]:
        payload = asdict(settings)
        secret = payload.pop("api_key", "")
        if secret:
            payload[_SEALED_KEY_FIELD] = self._vault.encrypt(secret)
        payload["version"] = _SCHEMA_VERSION
        payload["secret_backend"] = self._vault.strategy
        return payload

    def _from_payload(self, payload: Mapping[str, Any]) -> Settings:
        if not payload:
            return Settings()
        known = {item.name for item in fields(Settings)} - {"api_key"}
        values: Dict[str, Any] = {}
        for key, value in payload.items():
            if key not in known:
                continue
            try:
                values[key] = _coerce_stored(key, value)
            except ValueError:
                LOGGER.warning("Ignoring %s=%r in %s: wrong type", key, value, self._path)
        settings = Settings(**values)
        secret = self._unseal(payload.get(_SEALED_KEY_FIELD))
        if secret:
            settings = replace(settings, api_key=secret)
        LOGGER.debug("Loaded settings from %s (model=%s)", self._path, settings.model)
        return settings

    def _read(self) -> Dict[str, Any]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s must hold a JSON object", self._path)
            return {}
        return payload

    def _unseal(self, sealed: Any) -> str:
        if not isinstance(sealed, str) or not sealed:
            return ""
        try:
            return self._vault.decrypt(sealed)
        except ValueError as exc:
            LOGGER.warning("Dropping stored API key: %s", exc)
            return ""


def _environment_values() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for env_name, (field_name, convert) in _ENV_FIELDS.items():
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        try:
            values[field_name] = convert(raw)
        except ValueError:
            LOGGER.warning("Ignoring %s=%r: expected %s", env_name, raw, getattr(convert, "__name__", "value"))
    return values


def _coerce_stored(name: str, value: Any) -> Any:
    """Type a value read from the settings file like the field's default.

    Numbers and switches stored as strings are converted; anything else of
    the wrong shape raises ``ValueError``.
    """
    default = getattr(_DEFAULTS, name)
    if value is None:
        if name in _OPTIONAL_TEXT_FIELDS:
            return None
        raise ValueError(name)
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return _parse_bool(value)
        raise ValueError(name)
    if isinstance(default, (int, float)):
        if isinstance(value, bool):
            raise ValueError(name)
        if isinstance(default, int):
            if isinstance(value, int):
                return value
            if isinstance(value, str):
                return _parse_int(value)
            raise ValueError(name)
        if isinstance(value, (int, float, str)):
            return float(value)
        raise ValueError(name)
    if isinstance(default, dict):
        if isinstance(value, Mapping):
            return dict(value)
        raise ValueError(name)
    if isinstance(value, str):
        return value
    raise ValueError(name)


def _merge(settings: Settings, updates: Mapping[str, Any], *, source: str) -> Settings:
    known = {item.name for item in fields(Settings)}
    changes = {key: value for key, value in updates.items() if key in known and value is not None}
    if isinstance(changes.get("metadata"), Mapping):
        changes["metadata"] = {**settings.metadata, **changes["metadata"]}
    if not changes:
        return settings
    LOGGER.debug("Applying %s overrides: %s", source, sorted(changes))
    return replace(settings, **changes)


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of ``value``."""

    text = (value or "").strip()
    if len(text) <= 4:
        return "*" * len(text)
    return text[:2] + "*" * (len(text) - 4) + text[-2:]
