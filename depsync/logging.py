"""Logging from config and env, plus secret redaction.

Levels (inclusive):
- ERROR: critical errors only
- WARNING: non-critical issues and ERROR
- INFO: service messages, WARNING, and ERROR
- DEBUG: debugging and all levels above

Configure via config.yaml (logging.level, logging.format) or env (LOGGING_LEVEL, LOGGING_FORMAT).

Credentials handed to update jobs are registered with a Redactor as soon as
they are fetched; SecretRedactor rewrites every log record so registered
values never reach a handler.
"""

import logging
import threading
from abc import ABC, abstractmethod

from depsync.config import LoggingConfig

# Supported levels only (DEBUG, INFO, WARNING, ERROR)
LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

DEFAULT_LEVEL = "INFO"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MASK = "***"


def _resolve_level(level: str) -> int:
    """Map level name to logging constant.

    Falls back to INFO if unknown.
    """
    return LEVELS.get(level.upper().strip(), logging.INFO)


class Redactor(ABC):
    """Receives secret values that must not appear in any output."""

    @abstractmethod
    def mask(self, value: str) -> None:
        """Register value as secret."""
        ...


class SecretRedactor(Redactor, logging.Filter):
    """Redactor that is also a logging filter replacing secrets with ***."""

    def __init__(self) -> None:
        super().__init__()
        self._secrets: set[str] = set()
        self._lock = threading.Lock()

    def mask(self, value: str) -> None:
        if not value or not value.strip():
            return
        with self._lock:
            self._secrets.add(value)

    @property
    def secrets(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._secrets)

    def redact(self, text: str) -> str:
        # Longest first so a secret containing another is fully masked
        for secret in sorted(self.secrets, key=len, reverse=True):
            text = text.replace(secret, MASK)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class DepsyncLogging:
    """Configures root logger from LoggingConfig (YAML + env LOGGING_*)."""

    def __init__(self, config: LoggingConfig, redactor: SecretRedactor | None = None) -> None:
        """Store logging config (level and format) and the redactor to install."""
        self._level = _resolve_level(config.level)
        self._format = config.format or DEFAULT_FORMAT
        self.redactor = redactor or SecretRedactor()

    def setup(self) -> None:
        """Apply level and format to the root logger and attach the redactor."""
        logging.basicConfig(
            level=self._level,
            format=self._format,
            force=True,
        )
        for handler in logging.root.handlers:
            handler.addFilter(self.redactor)
