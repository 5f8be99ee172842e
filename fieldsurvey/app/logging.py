from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional
from uuid import uuid4


# Correlation id for one operation (a merge, a page render); copied onto every record.
_RUN_ID: ContextVar[Optional[str]] = ContextVar("run_id", default=None)

# Attributes every LogRecord has; anything else on a record came from extra={}.
_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message", "asctime", "run_id",
}

# Chatty third-party loggers that drown the app's own lines at INFO.
_QUIET_LOGGERS = ("streamlit", "watchdog", "urllib3")


def get_run_id() -> Optional[str]:
    return _RUN_ID.get()


@contextmanager
def run_context(prefix: str) -> Iterator[str]:
    """Tag every log line inside the block with ``<prefix>_<8 hex chars>``.

    The previous id is restored on exit, so nested operations do not clobber
    the outer one.
    """
    token = _RUN_ID.set(f"{prefix}_{uuid4().hex[:8]}")
    try:
        yield _RUN_ID.get()
    finally:
        _RUN_ID.reset(token)


class RunIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _RUN_ID.get()
        return True


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value, ensure_ascii=False)
        return value
    except (TypeError, ValueError):
        return str(value)


class JsonFormatter(logging.Formatter):
    # One JSON object per line; extra={} fields are merged at the top level.
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "ts": ts.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "run_id": getattr(record, "run_id", None),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        payload.update(
            {k: _jsonable(v) for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}
        )
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_logs: bool = True) -> None:
    # Replaces any root handlers; streamlit reruns call this again.
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RunIdFilter())
    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s run_id=%(run_id)s %(message)s"
        ))
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
