"""Process-wide structured logger writing ECS-style JSON lines."""

from __future__ import annotations

import json
import sys
import threading
from datetime import datetime, timezone
from typing import Any, TextIO

ECS_VERSION = "1.6.0"

_lock = threading.Lock()
_stream: TextIO | None = None


def start(stream: TextIO | None = None) -> None:
    """Start the logger on the given stream (stdout by default); later calls do nothing."""
    global _stream
    with _lock:
        if _stream is not None:
            return
        _stream = stream if stream is not None else sys.stdout


def _reset() -> None:
    global _stream
    with _lock:
        _stream = None


def _require_stream() -> TextIO:
    if _stream is None:
        raise RuntimeError("logger not started")
    return _stream


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _emit(level: str, msg: str, fields: dict[str, Any]) -> None:
    stream = _require_stream()
    caller = sys._getframe(2)
    record: dict[str, Any] = {
        "log.level": level,
        "@timestamp": _timestamp(),
        "log.origin": {
            "file.name": caller.f_code.co_filename,
            "file.line": caller.f_lineno,
            "function": caller.f_code.co_name,
        },
        "message": msg,
        **fields,
        "ecs.version": ECS_VERSION,
    }
    line = json.dumps(record, default=str)
    with _lock:
        stream.write(line + "\n")


def _error_fields(err: BaseException | None, kwargs: dict[str, Any]) -> dict[str, Any]:
    fields = dict(kwargs)
    fields["error"] = {"message": str(err)}
    return fields


def info(msg: str, **kwargs: Any) -> None:
    """Log at info level with the given fields."""
    _emit("info", msg, kwargs)


def error(err: BaseException | None, msg: str, **kwargs: Any) -> None:
    """Log at error level, attaching the error."""
    _emit("error", msg, _error_fields(err, kwargs))


def panic(err: BaseException | None, msg: str, **kwargs: Any) -> None:
    """Log at panic level, attaching the error, then raise RuntimeError."""
    _emit("panic", msg, _error_fields(err, kwargs))
    raise RuntimeError(msg) from err


def sync() -> None:
    """Flush buffered log output."""
    _require_stream().flush()