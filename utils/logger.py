import logging
import json
import uuid
from flask import request, has_request_context, g
from datetime import datetime, timezone
import sys


class JSONFormatter(logging.Formatter):
    """
    Formatter to output logs in JSON format.
    Includes request_id if available in Flask context, and the `event` /
    `context` fields attached by log_event() so operators can alert on them.
    """
    def format(self, record):
        log_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "lineno": record.lineno,
        }

        event = getattr(record, "event", None)
        if event:
            log_record["event"] = event
            log_record["context"] = getattr(record, "context", None) or {}

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        if has_request_context():
            log_record["method"] = request.method
            log_record["path"] = request.path
            log_record["remote_ip"] = request.remote_addr
            if hasattr(g, "request_id"):
                log_record["request_id"] = g.request_id

        return json.dumps(log_record, default=str)


def log_event(logger, event, message=None, level=logging.WARNING, **context):
    """
    Emit a structured operational event.

    The log line carries a stable `event` name plus a `context` dict, so a
    failed bookkeeping write shows up as something alertable rather than as
    free text.
    """
    logger.log(
        level,
        message or event,
        extra={"event": event, "context": context},
    )


def setup_logger(app):
    """
    Configures the application logger to use JSON formatting
    and output to stdout (for container logging).
    """
    app.logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    app.logger.addHandler(handler)
    app.logger.setLevel(logging.INFO)

    # Service modules log through their own module loggers
    for name in ("services", "routes", "werkzeug"):
        logging.getLogger(name).handlers = [handler]
        logging.getLogger(name).setLevel(logging.INFO)

    gunicorn_logger = logging.getLogger('gunicorn.error')
    if gunicorn_logger.handlers:
        app.logger.handlers = gunicorn_logger.handlers
        app.logger.setLevel(gunicorn_logger.level)

    @app.before_request
    def add_request_id():
        g.request_id = request.headers.get("X-Request-Id", str(uuid.uuid4()))

    app.logger.info("Logger setup complete. JSON formatted logs enabled.")
