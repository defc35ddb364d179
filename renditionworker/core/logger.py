"""Logging setup shared by all modules.

Every module does ``logger = setup_logger(__name__)``. The returned logger adds
``error_trace`` which logs at ERROR level together with the active traceback.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, MutableMapping, Optional, Tuple
from urllib.parse import urlparse

from renditionworker.config import env

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class CustomLogger(logging.Logger):
    """Logger with a helper for logging errors with their stack trace."""

    def error_trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("exc_info", True)
        self.error(msg, *args, **kwargs)


logging.setLoggerClass(CustomLogger)


def _build_handlers() -> list:
    formatter = logging.Formatter(_FORMAT)
    handlers: list = []

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    handlers.append(console)

    if env.ENABLE_LOGGING:
        try:
            env.LOG_DIR.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                env.LOG_DIR / "renditionworker.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
            )
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as e:
            sys.stderr.write(f"File logging disabled, cannot write to {env.LOG_DIR}: {e}\n")

    return handlers


_HANDLERS: Optional[list] = None


def setup_logger(name: str) -> CustomLogger:
    """Return a configured logger for ``name``."""
    global _HANDLERS
    if _HANDLERS is None:
        _HANDLERS = _build_handlers()

    logger = logging.getLogger(name)
    if not isinstance(logger, CustomLogger):
        # Created before our logger class was installed
        logger.__class__ = CustomLogger

    logger.setLevel(getattr(logging, env.LOG_LEVEL, logging.INFO))
    if not logger.handlers:
        for handler in _HANDLERS:
            logger.addHandler(handler)
    logger.propagate = False
    return logger  # type: ignore[return-value]


class RenditionLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with the rendition index, e.g. ``[rendition 2] ...``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[rendition {self.extra['index']}] {msg}", kwargs

    def error_trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("exc_info", True)
        self.error(msg, *args, **kwargs)


def rendition_logger(logger: logging.Logger, index: int) -> RenditionLogAdapter:
    return RenditionLogAdapter(logger, {"index": index})


def redact_url(url: Optional[str]) -> str:
    """Strip query string and credentials from a url before logging it."""
    if not url:
        return ""
    if url.startswith("data:"):
        return url.split(",", 1)[0] + ",<data>"
    parsed = urlparse(url)
    if not parsed.scheme:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    redacted = parsed._replace(netloc=netloc, query="", fragment="")
    return redacted.geturl()
