"""Tracing of the reconciliation stages for debug logging."""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

__all__ = [
    "trace_context",
    "current_trace",
]


_trace: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "_trace", default=()
)


def current_trace() -> str:
    """Return the label of the stages currently being traced."""
    return " > ".join(_trace.get())


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Log entry and exit of a named stage along with its duration."""
    token = _trace.set(_trace.get() + (name,))
    label = current_trace()
    start = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, perf_counter() - start)
        _trace.reset(token)
