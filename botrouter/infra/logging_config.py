# botrouter/infra/logging_config.py
"""
Logging setup: JSON lines in production, coloured single lines in development.

Message-scoped fields (conversation, user, message, handler, command) travel
as ``extra`` attributes on the record; ``LogContext`` binds them once per
message so call sites stay short.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Iterable

CONTEXT_FIELDS = ("conversation_id", "user_id", "message_id", "handler", "command")

# Third-party loggers that are too chatty at INFO
_NOISY_LOGGERS = ("uvicorn.access", "aiohttp.access", "asyncio")

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"


def mask_id(value: str) -> str:
    """Mask a conversation id (usually a phone number) for log output."""
    if len(value) <= 6:
        return value
    return f"{value[:4]}****{value[-2:]}"


def _record_context(record: logging.LogRecord) -> dict:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(_record_context(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Readable lines for a terminal. Conversation ids are masked."""

    _SHORT = {"conversation_id": "conv", "user_id": "user", "message_id": "msg", "handler": "h", "command": "cmd"}

    def format(self, record: logging.LogRecord) -> str:
        context = _record_context(record)
        if "conversation_id" in context:
            context["conversation_id"] = mask_id(str(context["conversation_id"]))
        tags = " ".join(f"{self._SHORT[k]}={v}" for k, v in context.items())

        stamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        color = _LEVEL_COLORS.get(record.levelno, "")
        line = f"{stamp} {color}{record.levelname:<8}{_RESET} {record.name}"
        if tags:
            line += f" [{tags}]"
        line += f" | {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    use_json: bool = False,
    stream: IO[str] | None = None,
    quiet: Iterable[str] = _NOISY_LOGGERS,
) -> None:
    """
    Replace the root handlers with a single stream handler.

    Args:
        level: Root log level name
        use_json: JSON lines (production) instead of console format
        stream: Output stream, stdout by default
        quiet: Logger names capped at WARNING
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter() if use_json else ConsoleFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


class LogContext(logging.LoggerAdapter):
    """
    Logger bound to one message's identifiers.

        log = LogContext(logger, conversation_id=msg.conversation_id, message_id=msg.id)
        log.info("Dispatched")
    """

    def __init__(
            self,
            logger: logging.Logger,
            conversation_id: str | None = None,
            user_id: str | None = None,
            message_id: str | None = None,
    ):
        bound = {"conversation_id": conversation_id, "user_id": user_id, "message_id": message_id}
        super().__init__(logger, {k: v for k, v in bound.items() if v is not None})

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs
