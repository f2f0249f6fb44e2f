import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Optional

from loanflow.core.context import get_group_id, get_request_id
from loanflow.core.settings import settings


class WorkflowContextFilter(logging.Filter):
    """Stamp the current request id and loan group id on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        if not getattr(record, "group_id", None):
            record.group_id = get_group_id()
        return True


class JsonFormatter(logging.Formatter):
    def __init__(self, stream_label: str = "workflow") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stream": self.stream_label,
            "request_id": getattr(record, "request_id", "-"),
            "group_id": getattr(record, "group_id", "-"),
        }
        operation = getattr(record, "operation", None)
        if operation:
            payload["operation"] = operation
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "workflow_context": {"()": WorkflowContextFilter},
            },
            "formatters": {
                "json": {"()": JsonFormatter, "stream_label": "workflow"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "json",
                    "filters": ["workflow_context"],
                    "stream": "ext://sys.stdout",
                },
                "audit": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "audit_json",
                    "filters": ["workflow_context"],
                    "stream": "ext://sys.stdout",
                },
            },
            "loggers": {
                "": {"handlers": ["default"], "level": log_level, "propagate": False},
                "loanflow.audit": {"handlers": ["audit"], "level": log_level, "propagate": False},
                "uvicorn": {"handlers": ["default"], "level": log_level, "propagate": False},
                "uvicorn.error": {"handlers": ["default"], "level": log_level, "propagate": False},
                "uvicorn.access": {"handlers": ["default"], "level": log_level, "propagate": False},
            },
        }
    )
    logging.getLogger(__name__).info(
        "Logging configured for environment=%s email_backend=%s",
        settings.environment,
        settings.email_backend,
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger("loanflow.audit")
