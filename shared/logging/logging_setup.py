from contextvars import ContextVar
from datetime import datetime
from pytz import timezone
import logging.config
import logging
import os


debug_mode = os.getenv("LOG_LEVEL", "info").lower() == "debug"
loglevel = logging.INFO if not debug_mode else logging.DEBUG

# Id of the index job running in the current task, stamped onto every record
current_job_id: ContextVar[str | None] = ContextVar("current_job_id", default=None)

# Noisy third party loggers, silenced unless LOG_LEVEL=debug
_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")


class JobContextFilter(logging.Filter):
    """Adds ``record.job`` ("[job <id>] " or "") so lines written while an
    index job runs can be grepped by job id."""

    def filter(self, record):
        job_id = current_job_id.get()
        record.job = f"[job {job_id[:8]}] " if job_id else ""
        return True


class CustomFormatter(logging.Formatter):
    """Formatter rendering timestamps in the configured timezone and prefixing
    warnings and errors with a marker so they stand out in job logs."""

    def __init__(self, tz_name, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, self.tz)
        return dt.strftime(datefmt) if datefmt else dt.isoformat()

    def format(self, record):
        # every handler formats the same record; only the copy is rewritten
        record = logging.makeLogRecord(record.__dict__)
        if not hasattr(record, "job"):
            record.job = ""
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # malformed %-args from a third party logger, keep the raw template
            message = str(record.msg)

        if record.levelno >= logging.ERROR:
            record.msg = "⛔ " + message
        elif record.levelno == logging.WARNING:
            record.msg = "⚠️ " + message
        else:
            record.msg = message
        record.args = ()
        return super().format(record)


def setup_logging(log_to_file: bool = True) -> logging.Logger:
    """Configure the root logger and return the application logger.

    Args:
        log_to_file (bool): Also write to ``$ROOT_DIR/logs/app.log``. Tests
            switch this off to keep the working tree clean.

    Returns:
        logging.Logger: The "legal_index" logger.
    """
    tz_name = os.getenv("TIMEZONE", "Europe/Berlin")

    handlers: dict = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "filters": ["job_context"],
            "level": loglevel,
            "stream": "ext://sys.stdout",
        },
    }
    if log_to_file:
        log_dir = os.path.join(os.getenv("ROOT_DIR", os.getcwd()), "logs")
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "standard",
            "filters": ["job_context"],
            "level": loglevel,
            "filename": os.path.join(log_dir, "app.log"),
            "encoding": "utf-8",
        }

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "job_context": {"()": JobContextFilter},
        },
        "formatters": {
            "standard": {
                "()": CustomFormatter,
                "format": "%(asctime)s - %(levelname)s - %(job)s%(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "tz_name": tz_name,
            },
        },
        "handlers": handlers,
        "root": {
            "handlers": list(handlers.keys()),
            "level": loglevel,
        },
    }

    logging.config.dictConfig(logging_config)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug_mode else logging.WARNING)

    return logging.getLogger("legal_index")
