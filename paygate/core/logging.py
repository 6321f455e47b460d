"""
JSON logs, one object per line. The message is a snake_case event name
(webhook_received, intent_settled, access_granted); the reconciliation context
travels in `extra` and only whitelisted keys are emitted.
"""
import json
import logging
from logging.handlers import RotatingFileHandler
from datetime import datetime, timezone

from paygate.core.config import settings

# httpx logs every processor call at INFO; processor clients log failures themselves.
QUIET_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    EXTRA_FIELDS = (
        "step", "processor", "event", "intent_id", "payment_id", "account_id",
        "email", "status", "previous_status", "match_tier", "candidates",
        "external_reference", "preference_id", "source", "reason", "error",
        "context", "path", "method", "status_code", "breaker_name",
        "old_state", "new_state", "checked", "approved", "errors",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            {field: getattr(record, field) for field in self.EXTRA_FIELDS if getattr(record, field, None) is not None}
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> None:
    formatter = JsonFormatter()
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [handler]
    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.handlers = handlers
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
