"""
Phase schedule -- timing classification and the derived "is extended" flag.

Responsibility:
    Classifies a phase as future, in progress or completed for a given day,
    and derives whether a phase is currently extended from its extension
    requests.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O. "Today" is always passed
    in by the caller (from a Clock).

Invariants enforced:
    - In progress iff start <= today <= end, a missing bound being
      unconstrained on that side.
    - "Is extended" is never stored. It is true iff an ACCEPTED request under
      the phase has an extended date string equal (after trimming) to the
      phase's current end date string.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Iterable, Mapping, Sequence

from budget_kernel.domain.dtos import Phase, PhaseExtensionRequest, RequestStatus


class PhaseTiming(str, Enum):
    FUTURE = "future"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def is_in_progress(phase: Phase, today: date) -> bool:
    if phase.start_date is not None and today < phase.start_date:
        return False
    if phase.end_date is not None and today > phase.end_date:
        return False
    return True


def is_completed(phase: Phase, today: date) -> bool:
    return phase.end_date is not None and today > phase.end_date


def is_future(phase: Phase, today: date) -> bool:
    return phase.start_date is not None and today < phase.start_date


def phase_timing(phase: Phase, today: date) -> PhaseTiming:
    if is_future(phase, today):
        return PhaseTiming.FUTURE
    if is_completed(phase, today):
        return PhaseTiming.COMPLETED
    return PhaseTiming.IN_PROGRESS


def is_extended(end_raw: str | None, requests: Iterable[PhaseExtensionRequest]) -> bool:
    """True iff an accepted request's extended date matches the end date string."""
    if end_raw is None:
        return False
    end = end_raw.strip()
    if not end:
        return False
    return any(
        request.status is RequestStatus.ACCEPTED
        and request.extended_date.strip() == end
        for request in requests
    )


def extension_map(
    phases: Sequence[Phase],
    requests_by_phase: Mapping[str, Sequence[PhaseExtensionRequest]],
) -> dict[str, bool]:
    """phase_id -> is extended, recomputed from the current phases and requests."""
    return {
        phase.phase_id: is_extended(phase.end_raw, requests_by_phase.get(phase.phase_id, ()))
        for phase in phases
    }
