"""
PromptX Logging

One ``promptx`` logger tree for the whole runtime. Records carry keyword
context that the formatter renders after the message, so call sites read:

    from backend.utils.logger import get_logger
    logger = get_logger(__name__)

    logger.info("Entity loaded", entity="solver", capabilities=3)

and per-object loggers are made with ``bind``:

    log = logger.bind(entity="solver")
    log.warning("Blocked undeclared capability", capability="http_get")
"""

import logging
import logging.handlers
import sys
import os
from typing import Optional, Any, Dict


LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

ROOT_LOGGER_NAME = "promptx"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
CONSOLE_FORMAT = "%(asctime)s | %(levelname_colored)s | %(location)s | %(message)s%(context_str)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(location)s | %(message)s%(context_str)s"

# Third-party loggers that only speak up at WARNING
QUIET_LIBRARIES = ("aiohttp", "anthropic", "httpx", "sqlalchemy")

_RESET = "\033[0m"
_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}

# Keyword arguments the stdlib logging call understands itself
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})


def _render_value(value: Any) -> str:
    text = str(value)
    if any(ch.isspace() for ch in text):
        return repr(text)
    return text


def render_context(context: Optional[Dict[str, Any]]) -> str:
    """``{"a": 1, "b": "x y"}`` -> ``" | a=1 b='x y'"``; empty string without context."""
    if not context:
        return ""
    return " | " + " ".join(f"{key}={_render_value(value)}" for key, value in context.items())


class PromptXFormatter(logging.Formatter):
    """Adds ``location``, ``context_str`` and ``levelname_colored`` to each record."""

    def __init__(self, fmt: str, datefmt: str = None, use_colors: bool = False):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if not getattr(record, "location", None):
            filename = os.path.basename(record.pathname) if record.pathname else "unknown"
            record.location = f"{filename}:{record.funcName}:{record.lineno}"

        record.context_str = render_context(getattr(record, "context", None))

        level = f"{record.levelname:8}"
        color = _LEVEL_COLORS.get(record.levelname) if self.use_colors else None
        record.levelname_colored = f"{color}{level}{_RESET}" if color else level

        return super().format(record)


class PromptXLogger(logging.LoggerAdapter):
    """
    LoggerAdapter that turns unknown keyword arguments into record context.

    Bound context (see ``bind``) is merged under the per-call keywords, so a
    call can override a bound field for one record.
    """

    def __init__(self, logger: logging.Logger, extra: Dict[str, Any] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        context = dict(self.extra)
        for key in [k for k in kwargs if k not in _LOGGING_KWARGS]:
            context[key] = kwargs.pop(key)

        extra = dict(kwargs.get("extra") or {})
        extra["context"] = context
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **context: Any) -> "PromptXLogger":
        """Logger for the same name that adds ``context`` to every record."""
        return PromptXLogger(self.logger, {**self.extra, **context})


_initialized = False


def _console_handler(level: int, use_colors: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(PromptXFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT, use_colors=use_colors))
    return handler


def _file_handler(log_dir: str, max_bytes: int, backup_count: int) -> logging.Handler:
    os.makedirs(log_dir, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, f"{ROOT_LOGGER_NAME}.log"),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    # The file keeps everything; the console level only filters the terminal
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(PromptXFormatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def configure_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    log_to_console: bool = True,
    use_colors: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 7,
    force: bool = False,
) -> None:
    """
    Install handlers on the ``promptx`` logger.

    Runs once unless ``force`` is set; ``get_logger`` calls it with defaults
    the first time a logger is requested.

    Args:
        log_level: Console threshold (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for a rotating ``promptx.log``; no file output when omitted
        log_to_console: Write to stderr
        use_colors: ANSI level colors on the console
        max_bytes: Rotation size of the log file
        backup_count: Rotated files to keep
        force: Replace handlers installed by an earlier call
    """
    global _initialized

    if _initialized and not force:
        return

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    if log_to_console:
        level = LOG_LEVELS.get(log_level.upper(), logging.INFO)
        root_logger.addHandler(_console_handler(level, use_colors))
    if log_dir:
        root_logger.addHandler(_file_handler(log_dir, max_bytes, backup_count))

    for library in QUIET_LIBRARIES:
        logging.getLogger(library).setLevel(logging.WARNING)

    _initialized = True


def logger_name(module: Optional[str]) -> str:
    """Map a module path such as ``backend.promptx.runtime.entity`` into the ``promptx`` tree."""
    if not module:
        return ROOT_LOGGER_NAME
    if module.startswith("backend."):
        module = module[len("backend."):]
    if module == ROOT_LOGGER_NAME or module.startswith(ROOT_LOGGER_NAME + "."):
        return module
    return f"{ROOT_LOGGER_NAME}.{module}"


def get_logger(name: str = None) -> PromptXLogger:
    """
    Logger for a module, usually called with ``__name__``.

    Configures logging with defaults on first use.
    """
    if not _initialized:
        configure_logging()
    return PromptXLogger(logging.getLogger(logger_name(name)))


__all__ = [
    "configure_logging",
    "get_logger",
    "logger_name",
    "render_context",
    "PromptXLogger",
    "PromptXFormatter",
    "LOG_LEVELS",
]
