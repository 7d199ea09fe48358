"""
budget_kernel.domain.consistency -- Named consistency modes for workflows.

Responsibility:
    Every service operation that touches both the remote document store and
    the in-memory Dashboard Store declares which ordering it follows:

    OPTIMISTIC_WITH_COMPENSATION
        Apply the local mutation first, reconcile remotely, and apply the
        exact inverse of the local mutation if reconciliation fails or
        conflicts (team membership).

    CONFIRM_THEN_APPLY
        Write remotely first; apply the local mutation only after the write
        succeeded (expense decisions, delegation, extension resolution).

    The ``@consistency_mode`` decorator records the mode on the function,
    registers it by operation name, and emits a BUDGET_OPERATION_TRACE log
    record per invocation.

Architecture position:
    Kernel > Domain. Emits a log record only; no I/O of its own.

Invariants enforced:
    - An operation name is registered with exactly one mode.

Failure modes:
    - ValueError when an operation name is re-registered with another mode.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

from budget_kernel.logging_config import get_logger

logger = get_logger("domain.consistency")

F = TypeVar("F", bound=Callable[..., Any])


class ConsistencyMode(str, Enum):
    OPTIMISTIC_WITH_COMPENSATION = "optimistic_with_compensation"
    CONFIRM_THEN_APPLY = "confirm_then_apply"


_REGISTRY: dict[str, ConsistencyMode] = {}


def consistency_mode(mode: ConsistencyMode, operation: str) -> Callable[[F], F]:
    """Declare the consistency mode of a store-mutating operation."""
    existing = _REGISTRY.get(operation)
    if existing is not None and existing is not mode:
        raise ValueError(
            f"Operation {operation} already declared as {existing.value}"
        )
    _REGISTRY[operation] = mode

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            t0 = time.monotonic()
            outcome = "error"
            try:
                result = func(*args, **kwargs)
                outcome = "ok"
                return result
            finally:
                logger.debug(
                    "BUDGET_OPERATION_TRACE",
                    extra={
                        "trace_type": "BUDGET_OPERATION_TRACE",
                        "operation": operation,
                        "consistency_mode": mode.value,
                        "outcome": outcome,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )

        wrapper.__consistency_mode__ = mode  # type: ignore[attr-defined]
        wrapper.__operation__ = operation  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator


def declared_mode(func: Callable[..., Any]) -> ConsistencyMode | None:
    return getattr(func, "__consistency_mode__", None)


def registered_operations() -> dict[str, ConsistencyMode]:
    return dict(_REGISTRY)
