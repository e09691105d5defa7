"""Timing decorator for outbound provider calls."""

from __future__ import annotations

import time
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from infragraph.core.bus import API_CALL, EventBus

F = TypeVar("F", bound=Callable[..., Any])


def instrumented(
    fn: F,
    bus: Optional[EventBus],
    provider: str,
    service: str,
    operation: str,
) -> F:
    """Wrap a callable so every call is timed and reported on the bus.

    The wrapper keeps the call interface of ``fn``. Exceptions are
    re-raised unchanged after the event is emitted.

    Args:
        fn: The provider call, e.g. a bound boto3 client method
        bus: Bus receiving 'api.call' events; None disables reporting
        provider: Cloud provider name
        service: Provider service (e.g. 'ec2')
        operation: Operation name (e.g. 'describe_instances')

    Returns:
        The wrapped callable
    """
    if bus is None:
        return fn

    @wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        start = time.perf_counter()
        error: Optional[str] = None
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            raise
        finally:
            bus.emit(API_CALL, {
                "provider": provider,
                "service": service,
                "operation": operation,
                "duration_ms": (time.perf_counter() - start) * 1000,
                "ok": error is None,
                "error": error,
            })

    return wrapper  # type: ignore[return-value]
