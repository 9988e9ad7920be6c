import logging
import logging.config
import os


class ColourizedFormatter(logging.Formatter):
    """
    Formatter that colours the level name of each record.
    """
    GREY = "\x1b[90m"
    GREEN = "\x1b[32m"
    YELLOW = "\x1b[33m"
    RED = "\x1b[31m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        colour = self.LEVEL_COLORS.get(record.levelno)
        if colour:
            record.levelname = f"{colour}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers share the record.
            record.levelname = levelname


# Chatty third-party loggers kept at WARNING unless LOG_LEVEL is DEBUG.
_QUIET_LOGGERS = ("openai", "httpx", "httpcore")


def get_logging_config() -> dict:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = os.getenv("LOG_DIR")

    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "default",
        },
    }
    handler_names = ["console"]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": os.path.join(log_dir, "app.log"),
            "formatter": "plain",
            "encoding": "utf-8",
        }
        handler_names.append("file")

    loggers: dict[str, dict] = {
        "": {"handlers": handler_names, "level": level},
    }
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        loggers[name] = {"handlers": handler_names, "level": "INFO", "propagate": False}
    quiet_level = "DEBUG" if level == "DEBUG" else "WARNING"
    for name in _QUIET_LOGGERS:
        loggers[name] = {"level": quiet_level}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "ledger_categorizer.logger.ColourizedFormatter",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            },
            "plain": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            },
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
