"""
budget_services.events -- In-process event bus and status-change events.

Responsibility:
    Broadcasts facts that other observers react to after a confirmed write
    (an expense decided, a phase extended, a delegation changed). Handlers
    subscribe by event type and run synchronously in subscription order.

Failure modes:
    - A handler exception propagates to the publisher. Events are published
      only after the remote write committed, so publishers never undo work
      because of a handler failure.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

from budget_kernel.domain.dtos import DelegationStatus, ExpenseStatus
from budget_kernel.logging_config import get_logger

logger = get_logger("services.events")

Handler = Callable[[Any], None]


@dataclass(frozen=True)
class ExpenseStatusChanged:
    expense_id: str
    tenant_id: str
    project_id: str
    phase_id: str | None
    department: str
    old_status: ExpenseStatus
    new_status: ExpenseStatus
    amount: Decimal
    is_anonymous: bool
    actor_id: str
    occurred_at: datetime


@dataclass(frozen=True)
class PhaseExtended:
    tenant_id: str
    project_id: str
    phase_id: str
    request_id: str
    previous_end: str | None
    new_end: str
    actor_id: str
    occurred_at: datetime


@dataclass(frozen=True)
class DelegationChanged:
    tenant_id: str
    project_id: str
    record_id: str
    approver_id: str
    status: DelegationStatus
    occurred_at: datetime


class EventBus:
    """
    A simple in-process publish/subscribe bus keyed by event class.

    - subscribe(event_type, handler): registers a handler.
    - unsubscribe(event_type, handler): removes it.
    - publish(event): calls every handler subscribed to type(event).
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: type, handler: Handler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)
        logger.debug(
            "event_handler_subscribed",
            extra={"event_type": event_type.__name__, "handler": getattr(handler, "__name__", repr(handler))},
        )

    def unsubscribe(self, event_type: type, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: Any) -> int:
        """Deliver ``event``; returns the number of handlers called."""
        with self._lock:
            handlers = list(self._handlers.get(type(event), ()))
        if not handlers:
            logger.debug("event_unhandled", extra={"event_type": type(event).__name__})
        for handler in handlers:
            handler(event)
        return len(handlers)
