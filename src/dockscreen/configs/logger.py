from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console
from rich.logging import RichHandler

# Pattern to strip Rich markup tags like [#B29EEE], [bold], [/bold], etc.
# Excludes standard log levels: [INFO], [WARNING], [ERROR], [DEBUG], [CRITICAL]
_RICH_MARKUP_RE = re.compile(
    r"\[/?(?!INFO\]|WARNING\]|ERROR\]|DEBUG\]|CRITICAL\])[^\]]+\]"
)

CONFIG_PATH = Path(__file__).resolve().parent / "config.yml"
DEFAULT_LOG_FILENAME = "virtual_screening.log"


class LoggerSingleton:
    """Singleton responsible for configuring project logging."""

    _instance: LoggerSingleton | None = None
    _logger: logging.Logger | None = None
    _console: Console | None = None
    _log_file: Path | None = None
    _file_handler: logging.Handler | None = None
    _lock = threading.Lock()

    def __new__(cls):
        """Create or reuse singleton instance (thread-safe)."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._console = Console()
        return cls._instance

    def get_logger(self, name="dockscreen"):
        """Return shared logger instance configured with Rich handlers."""
        if self._logger is None:
            self._logger = self._setup_logger(name)
        return self._logger

    @property
    def console(self) -> Console:
        """Return the shared Rich Console used by the logging handler."""
        return self._console

    @property
    def log_file(self) -> Path | None:
        """Return the file currently receiving log records, if any."""
        return self._log_file

    def configure_log_directory(
        self, folder_to_save: Path, filename: str = DEFAULT_LOG_FILENAME
    ) -> Path:
        """Attach an append-mode file handler writing to ``folder_to_save/filename``.

        Calling it again with a different target moves the handler, so one
        Python process can drive several runs.

        Returns:
            Path of the log file.
        """
        log_dir = Path(folder_to_save).resolve()
        log_dir.mkdir(parents=True, exist_ok=True)
        new_file = log_dir / filename

        if self._log_file is not None and new_file != self._log_file:
            self._detach_file_handler()

        self._log_file = new_file
        if self._logger is not None:
            self._ensure_file_handler()
        return new_file

    def _detach_file_handler(self) -> None:
        if self._logger is not None and self._file_handler is not None:
            self._logger.removeHandler(self._file_handler)
            self._file_handler.close()
        self._file_handler = None

    def _setup_logger(self, name="dockscreen"):
        """Configure console handler for Rich logging output.

        File handler is added later via configure_log_directory() once the run
        directory is known.
        """
        logger = logging.getLogger(name)
        logger.setLevel(logging.INFO)
        logger.handlers = []

        console_handler = RichHandler(
            rich_tracebacks=True,
            markup=True,
            show_time=True,
            show_level=True,
            show_path=False,
            console=self._console,
        )
        console_handler.setLevel(logging.INFO)
        logger.addHandler(console_handler)

        self._logger = logger
        self._ensure_file_handler()

        return logger

    def _ensure_file_handler(self) -> None:
        """Attach a file handler if a log file is configured."""
        if self._file_handler is not None:
            return
        if self._logger is None or self._log_file is None:
            return

        # Append mode: several runs (and the progress monitor) share one log.
        file_handler = logging.FileHandler(self._log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(_PlainTextFormatter())
        file_handler.setLevel(logging.INFO)
        self._logger.addHandler(file_handler)
        self._file_handler = file_handler


class _PlainTextFormatter(logging.Formatter):
    """Formatter that strips Rich markup tags for plain text log files."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        result = super().format(record)
        return _RICH_MARKUP_RE.sub("", result)


def setup_logger(name="dockscreen"):
    """Initialise logger singleton and return configured logger."""
    return LoggerSingleton().get_logger(name)


def get_logger():
    """Return the shared logger instance."""
    return LoggerSingleton().get_logger()


class LazyLogger:
    """Proxy that lazily resolves attributes on first use."""

    def __getattr__(self, name):
        """Resolve attribute lookups against the underlying logger."""
        logger_instance = get_logger()
        return getattr(logger_instance, name)


logger = LazyLogger()


def load_config(config_path: str | Path = CONFIG_PATH) -> dict[str, Any]:
    """Load YAML configuration file.

    Parameters:
        config_path: Path to the YAML configuration file.

    Returns:
        dict[str, Any]: Parsed configuration dictionary.

    Raises:
        FileNotFoundError: If configuration file doesn't exist.
        yaml.YAMLError: If YAML parsing fails.
    """
    config_path = Path(config_path)
    root_logger = logging.getLogger(__name__)
    try:
        with config_path.open(encoding="utf-8") as file:
            return yaml.safe_load(file) or {}
    except FileNotFoundError:
        root_logger.exception("Configuration file not found: %s", config_path)
        raise
    except yaml.YAMLError:
        root_logger.exception("Error parsing YAML configuration for %s", config_path)
        raise
