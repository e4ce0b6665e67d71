"""Logging setup for processes hosting the tool bridge."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from ..services.settings import Settings

__all__ = ["RedactingFilter", "setup_logging", "setup_logging_from_settings", "get_log_path"]

_DEFAULT_LOG_DIR = Path.home() / ".toolbridge" / "logs"
_LOG_FILE_NAME = "toolbridge.log"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_REDACTED = "***"
_LOG_PATH: Path | None = None


class RedactingFilter(logging.Filter):
    """Masks secrets in rendered log messages.

    Prompt payload dumps include request headers and metadata, so the
    configured API key must never reach a handler verbatim.
    """

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._secrets = tuple(secret for secret in secrets if secret and len(secret) >= 4)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        masked = message
        for secret in self._secrets:
            masked = masked.replace(secret, _REDACTED)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    secrets: Iterable[str] = (),
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
) -> Path:
    """Install a rotating file handler plus an optional console handler.

    Calling again replaces the handlers installed previously.
    """

    global _LOG_PATH
    target_dir = Path(log_dir or os.environ.get("TOOLBRIDGE_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILE_NAME

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    redactor = RedactingFilter(secrets)

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(redactor)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    quiet_level = max(level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)

    _LOG_PATH = log_path
    return log_path


def setup_logging_from_settings(settings: "Settings", **kwargs) -> Path:
    """Configure logging at DEBUG when ``settings.debug_logging`` is on."""

    level = logging.DEBUG if settings.debug_logging else logging.INFO
    return setup_logging(level, secrets=(settings.api_key,), **kwargs)


def get_log_path() -> Path | None:
    """Return the currently configured log file if available."""

    return _LOG_PATH
