import logging
import logging.config
import os
import re

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILENAME = "reconciler.log"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

# Per-component overrides on top of LOG_LEVEL, e.g. LOG_LEVEL_MATCHING=DEBUG
COMPONENT_LEVEL_ENV = {
    "budget_reconciler.matching": "LOG_LEVEL_MATCHING",
    "budget_reconciler.detection": "LOG_LEVEL_DETECTION",
    "budget_reconciler.services.bulk": "LOG_LEVEL_BULK",
    "budget_reconciler.storage": "LOG_LEVEL_STORAGE",
}

_TAG_RE = re.compile(r"^\[[A-Z]+\]")


class ReconcilerConsoleFormatter(logging.Formatter):
    """Colours the level name and the leading ``[TAG]`` of a message.

    Messages across the services start with a subsystem tag such as
    ``[MATCH]``, ``[DETECT]``, ``[BUDGET]`` or ``[BULK]``.
    """

    TAG_COLOR = "\x1b[36m"
    RESET = "\x1b[0m"
    LEVEL_COLORS = {
        logging.DEBUG: "\x1b[90m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        logging.CRITICAL: "\x1b[31;1m",
    }

    def formatMessage(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLORS.get(record.levelno)
        message = _TAG_RE.sub(lambda tag: f"{self.TAG_COLOR}{tag.group(0)}{self.RESET}", record.message)
        coloured = logging.makeLogRecord(record.__dict__)
        coloured.message = message
        if colour:
            coloured.levelname = f"{colour}{record.levelname}{self.RESET}"
        return super().formatMessage(coloured)


def _env_level(key: str, default: str) -> str:
    value = (os.getenv(key) or default).strip().upper()
    if isinstance(logging.getLevelName(value), int):
        return value
    return default


def get_logging_config() -> dict:
    root_level = _env_level("LOG_LEVEL", "INFO")
    log_dir = os.getenv("LOG_DIR")
    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "console",
        },
    }
    root_handlers = ["console"]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": os.path.join(log_dir, LOG_FILENAME),
            "maxBytes": LOG_FILE_MAX_BYTES,
            "backupCount": LOG_FILE_BACKUPS,
            "encoding": "utf-8",
            "formatter": "plain",
        }
        root_handlers.append("file")

    loggers: dict[str, dict] = {
        "": {"handlers": root_handlers, "level": root_level},
    }
    for name, key in COMPONENT_LEVEL_ENV.items():
        if os.getenv(key):
            loggers[name] = {"level": _env_level(key, root_level)}
    for name in ("uvicorn", "uvicorn.error"):
        loggers[name] = {"handlers": root_handlers, "level": "INFO", "propagate": False}
    loggers["uvicorn.access"] = {
        "handlers": root_handlers,
        "level": _env_level("LOG_LEVEL_ACCESS", "INFO"),
        "propagate": False,
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "()": "budget_reconciler.logger.ReconcilerConsoleFormatter",
                "format": LOG_FORMAT,
            },
            "plain": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
