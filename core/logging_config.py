import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional


SERVICE_NAME = "ops-metrics"

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(threadName)s): %(message)s"

# Third-party loggers that are chatty at INFO (token refreshes, every HTTP request, pool growth).
NOISY_LOGGERS = ("azure", "azure.identity", "httpx", "httpcore", "psycopg.pool", "urllib3")

# Set on the handler configure_logging installs; other root handlers (pytest, uvicorn) are left alone.
_HANDLER_MARK = "_ops_metrics_handler"


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    Sub-queries run on worker threads, so the thread name is kept to tie a warning back
    to the batch that spawned it. A `context` dict passed via `extra=` is merged in.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if isinstance(context, dict):
            log_record.update(context)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record, default=str)


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger once per process.

    ENV: LOG_FORMAT (JSON | TEXT) - Defaults to TEXT
    ENV: LOG_LEVEL (DEBUG | INFO | WARNING | ERROR) - Defaults to INFO
    """
    logger = logging.getLogger()

    # uvicorn --reload and repeated app factories call this again
    if any(getattr(h, _HANDLER_MARK, False) for h in logger.handlers):
        return logger

    fmt = (log_format or os.environ.get("LOG_FORMAT") or "TEXT").strip().upper()
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
    resolved = getattr(logging, level_name, logging.INFO)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    handler = logging.StreamHandler(sys.stdout)
    setattr(handler, _HANDLER_MARK, True)
    handler.setLevel(resolved)
    if fmt == "JSON":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger
