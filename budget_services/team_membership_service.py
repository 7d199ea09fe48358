"""
budget_services.team_membership_service -- Optimistic team membership edits.

Responsibility:
    Adds and removes project team members. The Dashboard Store is mutated
    first so the view responds at once; the project's ``teamMembers`` list
    is then read and rewritten with a compare-and-set, and the local
    mutation is undone exactly when the remote side conflicts or fails.

Architecture position:
    Services. Declared OPTIMISTIC_WITH_COMPENSATION.

Invariants enforced:
    - One persisted membership per member id, even under concurrent adds:
      the append is conditional on the stored list still being what was read.
    - The compensation is the exact inverse of the local step and is only
      applied when the local step actually changed the Store.
    - On success the Store's id list is replaced by the merged stored list.

Failure modes:
    - MembershipConflictError: member already present remotely.
    - ProjectNotFoundError: the project document is gone.
    - PreconditionFailedError: the list kept changing for every attempt.
    - TransientError: store failure, raised after compensation.
"""

from __future__ import annotations

from typing import Any, Callable

from budget_config import BudgetConfig
from budget_kernel.db import paths
from budget_kernel.db.document_store import DocumentStore
from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.domain.consistency import ConsistencyMode, consistency_mode
from budget_kernel.domain.dtos import TeamMember
from budget_kernel.exceptions import (
    BudgetKernelError,
    PreconditionFailedError,
    MembershipConflictError,
    ProjectNotFoundError,
)
from budget_kernel.logging_config import LogContext, get_logger
from budget_services.dashboard_store import DashboardStore
from budget_services.identity import IdentityResolver

logger = get_logger("services.team_membership")


class TeamMembershipService:
    """Add and remove project team members with local-first compensation."""

    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityResolver,
        dashboard: DashboardStore,
        clock: Clock | None = None,
        config: BudgetConfig | None = None,
    ):
        self._store = store
        self._identity = identity
        self._dashboard = dashboard
        self._clock = clock or SystemClock()
        self._config = config or BudgetConfig()

    def _write_members(
        self,
        tenant_id: str,
        project_id: str,
        change: Callable[[list[str]], list[str] | None],
    ) -> list[str]:
        """
        Read-modify-write the stored list under compare-and-set.

        ``change`` returns the new list, or None to stop without writing.
        Retries only when another writer changed the list in between.
        """
        path = paths.project_path(tenant_id, project_id)
        attempts = self._config.membership.write_attempts
        attempt = 0
        while True:
            attempt += 1
            data = self._store.get(path)
            if data is None:
                raise ProjectNotFoundError(tenant_id, project_id)
            raw: Any = data.get("teamMembers")
            current = [str(m) for m in raw] if isinstance(raw, list) else []
            updated = change(current)
            if updated is None:
                return current
            try:
                self._store.update(
                    path,
                    {"teamMembers": updated, "updatedAt": self._clock.now_utc()},
                    expected={"teamMembers": raw},
                )
                return updated
            except PreconditionFailedError:
                logger.info(
                    "team_members_write_retried",
                    extra={"attempt": attempt, "max_attempts": attempts},
                )
                if attempt >= attempts:
                    raise

    @consistency_mode(ConsistencyMode.OPTIMISTIC_WITH_COMPENSATION, "team.add_member")
    def add_member(self, project_id: str, member: TeamMember) -> list[str]:
        """Add ``member``; returns the authoritative stored id list."""
        caller = self._identity.resolve()
        tenant_id = caller.tenant_id
        with LogContext.bind(tenant_id=tenant_id, project_id=project_id, actor_id=caller.user_id):
            local = self._dashboard.tracks(tenant_id, project_id)
            changed = local and self._dashboard.add_team_member(member)

            def append(current: list[str]) -> list[str]:
                if member.member_id in current:
                    raise MembershipConflictError(project_id, member.member_id)
                return current + [member.member_id]

            try:
                merged = self._write_members(tenant_id, project_id, append)
            except BudgetKernelError as exc:
                if changed:
                    self._dashboard.remove_team_member(member.member_id)
                logger.warning(
                    "team_member_add_compensated",
                    extra={
                        "member_id": member.member_id,
                        "local_change_undone": changed,
                        "error_code": exc.code,
                    },
                )
                raise

            if local:
                self._dashboard.confirm_team_member_ids(merged, known=[member])
            logger.info(
                "team_member_added",
                extra={"member_id": member.member_id, "team_size": len(merged)},
            )
            return merged

    @consistency_mode(ConsistencyMode.OPTIMISTIC_WITH_COMPENSATION, "team.remove_member")
    def remove_member(self, project_id: str, member_id: str) -> list[str]:
        """Remove ``member_id``; removing an absent member is a no-op."""
        caller = self._identity.resolve()
        tenant_id = caller.tenant_id
        with LogContext.bind(tenant_id=tenant_id, project_id=project_id, actor_id=caller.user_id):
            local = self._dashboard.tracks(tenant_id, project_id)
            removed = self._dashboard.remove_team_member(member_id) if local else None

            def drop(current: list[str]) -> list[str] | None:
                if member_id not in current:
                    return None
                return [m for m in current if m != member_id]

            try:
                remaining = self._write_members(tenant_id, project_id, drop)
            except BudgetKernelError as exc:
                if removed is not None:
                    self._dashboard.add_team_member(removed)
                logger.warning(
                    "team_member_remove_compensated",
                    extra={
                        "member_id": member_id,
                        "local_change_undone": removed is not None,
                        "error_code": exc.code,
                    },
                )
                raise

            if local:
                self._dashboard.confirm_team_member_ids(remaining)
            logger.info(
                "team_member_removed",
                extra={"member_id": member_id, "team_size": len(remaining)},
            )
            return remaining
