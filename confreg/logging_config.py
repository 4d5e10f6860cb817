import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler

from confreg import config

REDACTED_KEYS = {"loginPin", "login_pin", "pin", "password"}


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line, with structured ``context`` when given."""

    def format(self, record: logging.LogRecord) -> str:
        line = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            line["context"] = context
        if record.exc_info:
            line["stack"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


def setup_logging():
    """Configure application logging"""
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))
    logger.handlers.clear()

    formatter = JsonLineFormatter()
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if config.LOG_TO_FILE:
        try:
            os.makedirs(config.LOG_DIR, exist_ok=True)
            file_handler = TimedRotatingFileHandler(
                os.path.join(config.LOG_DIR, f"{config.LOG_PREFIX}.log"),
                when="midnight",
                utc=True,
                backupCount=30,
                encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("File logging disabled", extra={"context": {"log_dir": config.LOG_DIR, "error": str(exc)}})
        else:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    # Silence noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


def redact(body: dict | None) -> dict:
    if not body:
        return {}
    return {k: ("<redacted>" if k in REDACTED_KEYS else v) for k, v in body.items()}


def db_error_details(exc: BaseException) -> dict:
    orig = getattr(exc, "orig", None) or exc.__cause__ or exc
    args = getattr(orig, "args", ()) or ()
    errno = args[0] if args and isinstance(args[0], int) else getattr(orig, "errno", None)
    return {
        "dbCode": getattr(orig, "pgcode", None) or getattr(orig, "sqlite_errorname", None) or type(orig).__name__,
        "dbErrno": errno,
        "sqlState": getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None),
        "sqlMessage": str(orig),
        "sql": getattr(exc, "statement", None),
    }


def log_db_error(logger: logging.Logger, exc: BaseException, message: str = "DB operation failed", **context):
    details = db_error_details(exc)
    logger.error(
        message,
        extra={
            "context": {
                **context,
                **details,
                "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            }
        },
    )
