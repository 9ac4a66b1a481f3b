"""Utilities for context tracing."""

from collections.abc import Callable, Generator
import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter


_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


trace: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "trace", default=()
)


@contextmanager
def trace_context(
    name: str, observe: Callable[[float], None] | None = None
) -> Generator[None, None, None]:
    """Log entry and exit of a named step nested within the current task.

    The optional `observe` callback receives the elapsed seconds, whether
    or not the step raised.
    """
    stack = trace.get() + (name,)
    token = trace.set(stack)
    label = " > ".join(stack)
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        elapsed = perf_counter() - t1
        trace.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, elapsed)
        if observe is not None:
            observe(elapsed)
