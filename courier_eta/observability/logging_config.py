from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from flask import Flask, g, has_request_context, request

from courier_eta.config import Config

# Extra keys the services attach to their log calls
CONTEXT_FIELDS = ("order_id", "code", "source", "reason", "status_code")

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [req=%(request_id)s order=%(order_id)s] %(message)s"


def _order_in_request() -> Optional[str]:
    """The order a request is about: the URL segment, else the calculator body."""
    view_args = request.view_args or {}
    if view_args.get("order_id"):
        return str(view_args["order_id"])
    body = request.get_json(silent=True) if request.is_json else None
    if isinstance(body, dict) and body.get("orderId") is not None:
        return str(body["orderId"])
    return None


class RequestContextFilter(logging.Filter):
    """Stamp records with the request id and the order being served."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if has_request_context():
            record.request_id = getattr(g, "request_id", None)
            record.path = request.path
            record.method = request.method
            if getattr(record, "order_id", None) is None:
                record.order_id = _order_in_request()
        else:
            record.request_id = getattr(record, "request_id", None)
            record.path = None
            record.method = None
            record.order_id = getattr(record, "order_id", None)
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            "path": getattr(record, "path", None),
            "method": getattr(record, "method", None),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_handler(structured: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if structured else logging.Formatter(TEXT_FORMAT))
    handler.addFilter(RequestContextFilter())
    return handler


def configure_logging(app: Flask, config: Any = Config) -> None:
    """Install one stdout handler on the root and app loggers."""
    handler = _build_handler(config.STRUCTURED_LOGS_ENABLED)

    root_logger = logging.getLogger()
    root_logger.setLevel(config.LOG_LEVEL)
    # Replace rather than append so app reloads do not duplicate lines
    root_logger.handlers = [handler]
    app.logger.handlers = [handler]
    app.logger.setLevel(config.LOG_LEVEL)

    # The tracker polls; connection-pool chatter drowns the ETA lines
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    app.logger.debug(
        "Logging configured (%s).",
        "json" if config.STRUCTURED_LOGS_ENABLED else "text",
    )


def ensure_request_id(header_name: str = Config.REQUEST_ID_HEADER) -> str:
    """Return the active request id, adopting the caller's header when present."""
    request_id = getattr(g, "request_id", None)
    if not request_id:
        request_id = request.headers.get(header_name) or uuid4().hex
        g.request_id = request_id
    return request_id
