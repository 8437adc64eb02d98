import contextvars
import logging
import sys
import json
import re
from typing import Any, Dict, Optional
from logging.handlers import QueueHandler, QueueListener
from queue import Queue
from stockreserve.config.admin_config import admin_config

ENV = getattr(admin_config, "ENV", "dev").lower()

# set per request by RequestIdMiddleware
request_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)

SENSITIVE_PATTERNS = [
    "password", "secret", "token", "authorization", "signature",
    "api_key", "apikey", "access_token", "merchant_key",
]

# LogRecord attributes that are not user supplied extras
_RECORD_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread", "threadName", "processName",
    "process", "taskName", "message", "asctime",
))


def sanitize_message_text(msg: str) -> str:
    """Redact values that follow a sensitive key inside a text message (best-effort)."""
    out = msg
    for p in SENSITIVE_PATTERNS:
        out = re.sub(rf'("{p}"\s*:\s*")[^"]+(")', rf'\1[REDACTED]\2', out, flags=re.IGNORECASE)
        out = re.sub(rf'({p}\s*[=:\s]\s*)[\w\-\./]+', rf'\1[REDACTED]', out, flags=re.IGNORECASE)
    return out


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields passed via `extra=`; caller ids are shortened outside dev."""
    extras: Dict[str, Any] = {}
    for k, v in record.__dict__.items():
        if k in _RECORD_ATTRS or k.startswith("_"):
            continue
        if k in ("user_id", "caller_id", "performed_by") and ENV != "dev" and v is not None:
            val = str(v)
            v = val[:8] + "..." if len(val) > 8 else val
        extras[k] = v
    return extras


class KeyValueFormatter(logging.Formatter):
    """Human readable dev output; event name followed by its extras as key=value."""
    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _record_extras(record)
        if extras:
            line += " | " + " ".join(f"{k}={v}" for k, v in extras.items())
        return line


class JSONFormatter(logging.Formatter):
    """Structured JSON formatter for staging/prod"""
    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "env": ENV,
            "service": admin_config.SERVICE_NAME,
        }

        rid = request_id_ctx.get()
        if rid:
            log_data["request_id"] = rid

        log_data.update(_record_extras(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if ENV != "dev":
            log_data["message"] = sanitize_message_text(log_data.get("message", ""))

        return json.dumps(log_data, default=str)


class SecurityFilter(logging.Filter):
    """Redact sensitive info in non-dev logs"""

    def filter(self, record: logging.LogRecord) -> bool:
        if ENV != "dev":
            record.msg = sanitize_message_text(record.getMessage())
            record.args = ()
        return True


_queue_listener: Optional[QueueListener] = None


def setup_logging():
    """Install a non-blocking queue based root handler. Safe to call more than once."""
    global _queue_listener

    if ENV in ("prod", "staging"):
        log_level = logging.INFO
    else:
        log_level = logging.DEBUG

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None

    q: Queue = Queue(-1)
    qh = QueueHandler(q)

    console_handler = logging.StreamHandler(sys.stdout)
    if ENV != "dev":
        console_handler.setFormatter(JSONFormatter())
        console_handler.addFilter(SecurityFilter())
    else:
        console_handler.setFormatter(KeyValueFormatter(
            "%(asctime)s [%(levelname)8s] %(name)s:%(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    root.setLevel(log_level)
    root.addHandler(qh)

    _queue_listener = QueueListener(q, console_handler, respect_handler_level=True)
    _queue_listener.start()

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING if ENV != "dev" else logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    return logging.getLogger("stockreserve.app")


def shutdown_logging():
    global _queue_listener
    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None


class ContextLogger:
    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _with_ctx(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        extra = dict(extra or {})
        rid = request_id_ctx.get()
        if rid:
            extra.setdefault("request_id", rid)
        return extra

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = kwargs.pop("extra", None)
        kwargs["extra"] = {**self._with_ctx(), **(extra or {})}
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, *args, **kwargs)


def get_logger(name: str = "stockreserve.app") -> ContextLogger:
    return ContextLogger(name)
