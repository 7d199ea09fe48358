"""
Pure domain layer.

Data transfer objects, budget arithmetic, date/key normalization, the
delegation state machine and the dashboard projection reducers. Nothing in
this package performs I/O; time arrives through an injected Clock.
"""

from budget_kernel.domain.clock import Clock, DeterministicClock, SequentialClock, SystemClock

__all__ = ["Clock", "DeterministicClock", "SequentialClock", "SystemClock"]
