import logging
import os
import sys
from typing import ClassVar, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%H:%M:%S"
_configured: str | int | bool = False

# The bound command owns the terminal; SDK chatter stays out of it
QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "asyncio")


class _LevelColorFormatter(logging.Formatter):
    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\x1b[37m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[41m",
    }
    RESET: ClassVar[str] = "\x1b[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname)
        if color:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def _supports_color() -> bool:
    return sys.stderr.isatty() and os.getenv("NO_COLOR") is None


def configure_logging(level: Optional[str | int] = None) -> str | int:
    """Configure root logging on stderr once.

    The level defaults to `SITEBIND_LOG_LEVEL` (INFO). Calling again with a
    different level only changes the level.
    """
    from sitebind.config.environment import Environment

    global _configured

    if isinstance(level, str):
        level = level.upper()
    if level is None:
        level = Environment.get_log_level()

    if _configured and _configured == level:
        return level
    _configured = level

    formatter_cls = _LevelColorFormatter if _supports_color() else logging.Formatter
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(stream=sys.stderr)
    root.setLevel(level)
    for h in root.handlers:
        if isinstance(h, logging.StreamHandler):
            h.setLevel(level)
            h.setFormatter(formatter_cls(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return level


def get_logger(name: str) -> logging.Logger:
    """Return a module-scoped logger."""
    configure_logging()
    return logging.getLogger(name)
