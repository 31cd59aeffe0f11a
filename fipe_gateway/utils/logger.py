"""Logger utility for FIPE Gateway.

All gateway components log through children of a single package logger so
that the host application can route, silence or re-level them in one place.
The parent logger defaults to ``fipe_gateway`` and can be re-rooted under an
application logger with the ``logging.parent_logger`` setting.
"""

import logging
import logging.handlers
import sys
from typing import Any, Dict, Optional

DEFAULT_LOGGER_NAME = "fipe_gateway"

DEFAULT_LOGGING_CONFIG: Dict[str, Any] = {
    "level": "INFO",
    "parent_logger": None,
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    "date_format": "%Y-%m-%d %H:%M:%S",
    "enable_console": True,
    "enable_file": False,
    "file_path": None,
    "max_file_size": 10485760,  # 10MB
    "backup_count": 5,
}


class ColorFormatter(logging.Formatter):
    """Formatter that colors the whole line by level."""

    COLORS = {
        "DEBUG": "\033[94m",  # Blue
        "INFO": "\033[92m",  # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",  # Red
        "CRITICAL": "\033[95m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        msg = super().format(record)
        color = self.COLORS.get(record.levelname)
        if not color:
            return msg
        return f"{color}{msg}{self.RESET}"


def _stream_is_tty(stream) -> bool:
    isatty = getattr(stream, "isatty", None)
    try:
        return bool(isatty and isatty())
    except ValueError:
        # closed stream
        return False


class LoggerManager:
    """Owns the package parent logger and hands out child loggers."""

    def __init__(self):
        self._config: Optional[Dict[str, Any]] = None
        self._loggers: Dict[str, logging.Logger] = {}

    @property
    def configured(self) -> bool:
        return self._config is not None

    @property
    def root_name(self) -> str:
        return (self._config or {}).get("parent_logger") or DEFAULT_LOGGER_NAME

    def configure(self, config: Optional[Dict[str, Any]]) -> None:
        """Apply a logging configuration section.

        Missing keys fall back to ``DEFAULT_LOGGING_CONFIG``. Calling this
        again replaces the handlers installed by the previous call.

        Args:
            config: The ``logging`` section of the gateway configuration
        """
        merged = dict(DEFAULT_LOGGING_CONFIG)
        merged.update(config or {})
        self._config = merged
        self._install_handlers()
        # Child loggers cached under the old root name are stale now
        self._loggers = {name: lg for name, lg in self._loggers.items() if name.startswith(self.root_name + ".")}

    def _install_handlers(self) -> None:
        cfg = self._config
        parent = logging.getLogger(self.root_name)
        for handler in list(parent.handlers):
            parent.removeHandler(handler)
            handler.close()

        parent.setLevel(getattr(logging, str(cfg["level"]).upper(), logging.INFO))

        plain = logging.Formatter(cfg["format"], cfg["date_format"])

        if cfg.get("enable_console", True):
            console = logging.StreamHandler(sys.stdout)
            if _stream_is_tty(sys.stdout):
                console.setFormatter(ColorFormatter(cfg["format"], cfg["date_format"]))
            else:
                console.setFormatter(plain)
            parent.addHandler(console)

        if cfg.get("enable_file") and cfg.get("file_path"):
            file_handler = logging.handlers.RotatingFileHandler(
                cfg["file_path"],
                maxBytes=cfg.get("max_file_size", DEFAULT_LOGGING_CONFIG["max_file_size"]),
                backupCount=cfg.get("backup_count", DEFAULT_LOGGING_CONFIG["backup_count"]),
            )
            file_handler.setFormatter(plain)
            parent.addHandler(file_handler)

        parent.propagate = False

    def get_logger(self, name: str) -> logging.Logger:
        """Return the child logger ``<root>.<name>``, configuring defaults on first use."""
        if not self.configured:
            self.configure(None)
        full_name = f"{self.root_name}.{name}"
        logger = self._loggers.get(full_name)
        if logger is None:
            logger = logging.getLogger(full_name)
            self._loggers[full_name] = logger
        return logger

    def set_level(self, level: str) -> None:
        if not self.configured:
            self.configure({"level": level})
            return
        self._config["level"] = level
        logging.getLogger(self.root_name).setLevel(getattr(logging, level.upper(), logging.INFO))


_logger_manager = LoggerManager()


def configure_logging(config: Optional[Dict[str, Any]]) -> None:
    """Configure package logging from the ``logging`` config section.

    Example:
        configure_logging({"level": "DEBUG", "enable_file": True, "file_path": "fipe.log"})
    """
    _logger_manager.configure(config)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a gateway component.

    Example:
        logger = get_logger("quota.ledger")
        logger.warning("Daily quota exhausted")
    """
    return _logger_manager.get_logger(name)


def set_log_level(level: str) -> None:
    """Change the level of every gateway logger (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""
    _logger_manager.set_level(level)
