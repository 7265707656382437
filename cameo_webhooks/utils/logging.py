"""
Structured logging for the webhook pipeline.

Two pieces of context ride along with every log line:
- correlation_id: set per inbound request by middleware, stored on the event row,
  and restored when the retry worker picks the event up again later.
- webhook context: the event being worked on (id, source, event_type, ...),
  bound once per attempt with webhook_log_context() instead of being passed
  as extra= to every call.

JSON output is the default; LOG_JSON=false switches to a key=value text line
for local runs.
"""
import json
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
webhook_ctx: ContextVar[dict[str, Any]] = ContextVar("webhook_ctx", default={})

# Record attributes (or bound context keys) copied into the output when present
WEBHOOK_FIELDS = ("webhook_id", "source", "event_type", "provider_event_id", "retry_count", "status")

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx", "stripe")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: Optional[str]) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


@contextmanager
def webhook_log_context(event, **fields) -> Iterator[dict[str, Any]]:
    """
    Bind a webhook event to every log line emitted inside the block.

    The event's stored correlation_id is restored when the current context has
    none (retry worker, cron script) so retries log under the id of the request
    that first delivered the event. Extra keyword fields override event values.
    """
    bound = {
        "webhook_id": str(event.id),
        "source": event.source,
        "event_type": event.event_type,
        "provider_event_id": getattr(event, "provider_event_id", None),
        "retry_count": getattr(event, "retry_count", None),
        **fields,
    }
    bound = {key: value for key, value in bound.items() if value is not None}

    ctx_token = webhook_ctx.set({**webhook_ctx.get(), **bound})
    cid_token = None
    stored_cid = getattr(event, "correlation_id", None)
    if stored_cid and get_correlation_id() is None:
        cid_token = correlation_id_ctx.set(stored_cid)
    try:
        yield bound
    finally:
        webhook_ctx.reset(ctx_token)
        if cid_token is not None:
            correlation_id_ctx.reset(cid_token)


def _webhook_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Bound context first, explicit extra= on the record wins."""
    fields = {key: value for key, value in webhook_ctx.get().items() if key in WEBHOOK_FIELDS}
    for key in WEBHOOK_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            fields[key] = value
    return fields


class StructuredJsonFormatter(logging.Formatter):
    """
    One JSON object per line:
    {"timestamp": "...", "level": "INFO", "correlation_id": "...", "module": "...",
     "message": "...", "webhook_id": "...", "source": "stripe", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
            **_webhook_fields(record),
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class KeyValueFormatter(logging.Formatter):
    """Human-readable line with the webhook context appended as key=value pairs."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        pairs = _webhook_fields(record)
        cid = get_correlation_id()
        if cid:
            pairs = {"cid": cid[:8], **pairs}
        if pairs:
            line += " " + " ".join(f"{key}={value}" for key, value in pairs.items())
        return line


def configure_structured_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Replace root handlers with a single stream handler. Call once at startup."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    formatter = StructuredJsonFormatter() if json_output else KeyValueFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
