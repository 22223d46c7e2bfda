"""Logging helpers for the coordinator.

configure_logging installs text or JSON output on the root logger and
track_performance times the scheduler and monitor hot paths. Everything
goes through the standard logging library.
"""

import functools
import inspect
import json
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

_STANDARD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra=`` fields are carried through."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Install a single stream handler on the root logger.

    Records logged while an API request is in flight carry its request id.
    """
    from devteam.middleware.request_id import RequestIdLogFilter

    handler = logging.StreamHandler()
    handler.addFilter(RequestIdLogFilter())
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
        )
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


@contextmanager
def _timed(fn: Callable, op: str) -> Iterator[None]:
    log = logging.getLogger(fn.__module__)
    started = time.perf_counter()
    try:
        yield
    except Exception:
        log.debug("%s failed after %.3fs", op, time.perf_counter() - started)
        raise
    log.debug("%s completed in %.3fs", op, time.perf_counter() - started)


def track_performance(func: Optional[Callable] = None, *, operation: str = ""):
    """Log how long each call takes at DEBUG, under the wrapped function's module logger.

    Usable bare (``@track_performance``) or with an operation label.
    Coroutine functions get an async wrapper.
    """
    def wrap(fn: Callable) -> Callable:
        op = operation or fn.__qualname__

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def timed_coroutine(*args: Any, **kwargs: Any) -> Any:
                with _timed(fn, op):
                    return await fn(*args, **kwargs)
            return timed_coroutine

        @functools.wraps(fn)
        def timed_call(*args: Any, **kwargs: Any) -> Any:
            with _timed(fn, op):
                return fn(*args, **kwargs)
        return timed_call

    return wrap(func) if func is not None else wrap
