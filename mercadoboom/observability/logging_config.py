from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import uuid4

from flask import Flask, g, has_request_context, request, session

from mercadoboom.config import Config

PLAIN_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [req=%(request_id)s] %(message)s"
REQUEST_FIELDS = ("request_id", "path", "method", "user_id")

# Chatty third-party loggers
QUIET_LOGGERS = ("werkzeug", "twilio.http_client", "urllib3")

_RESERVED = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {
    "message",
    "asctime",
    *REQUEST_FIELDS,
}


def _request_fields() -> Dict[str, Any]:
    if not has_request_context():
        return dict.fromkeys(REQUEST_FIELDS)
    return {
        "request_id": g.get("request_id"),
        "path": request.path,
        "method": request.method,
        "user_id": session.get("user_id"),
    }


class RequestContextFilter(logging.Filter):
    """Stamps every record with the request id, path, method and session user."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for key, value in _request_fields().items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON document per line; ``extra`` fields are nested under ``context``."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({key: getattr(record, key, None) for key in REQUEST_FIELDS})

        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED and not key.startswith("_")
        }
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(app: Flask) -> None:
    """Install one stdout handler on the root logger, JSON or plain text per Config."""
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    if Config.STRUCTURED_LOGS_ENABLED:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(Config.LOG_LEVEL)
    # Replace handlers so a reloader does not duplicate output
    root_logger.handlers = [handler]

    # Flask's own handler would print every app.logger line a second time
    app.logger.handlers.clear()
    app.logger.propagate = True
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.debug("Logging configured (structured=%s)", Config.STRUCTURED_LOGS_ENABLED)


def ensure_request_id() -> str:
    """Return the active request id, taking the caller's header when present."""
    if not g.get("request_id"):
        g.request_id = request.headers.get(Config.REQUEST_ID_HEADER) or uuid4().hex
    return g.request_id
