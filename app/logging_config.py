"""JSON logging configuration for the shop bot service."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            if "conversation_id" in context:
                log_data["conversation_id"] = str(context["conversation_id"])
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route the root logger to stdout as JSON."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"shopbot.{name}")


class ConversationLogger(logging.LoggerAdapter):
    """Adapter that stamps every record with the conversation it belongs to."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        combined_context = {**self.extra, **(context or {})}
        kwargs["extra"] = {"context": combined_context}
        return msg, kwargs


def conversation_logger(logger: logging.Logger, conversation_id: Any, **fields: Optional[Any]) -> ConversationLogger:
    extra = {"conversation_id": str(conversation_id)}
    extra.update({key: value for key, value in fields.items() if value is not None})
    return ConversationLogger(logger, extra)
