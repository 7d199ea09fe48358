"""
budget_services.identity -- Caller identity resolution.

Responsibility:
    Services need exactly one thing from authentication: who is calling and
    which tenant they act for. ``IdentityResolver`` is that seam;
    ``StaticIdentityResolver`` serves tests, scripts and request handlers
    that already authenticated the caller.

Invariants enforced:
    - Phone-based user ids are normalized (trimmed, country prefix dropped)
      so they compare equal to stored team, manager and delegate ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from budget_kernel.domain.dtos import UserRole
from budget_kernel.domain.formats import normalize_member_id


@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    tenant_id: str
    role: UserRole = UserRole.USER
    display_name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.BUSINESSHEAD


class IdentityResolver(Protocol):
    def resolve(self) -> CallerIdentity:
        """Return the identity of the current caller."""
        ...


class StaticIdentityResolver:
    """Resolves to one fixed, pre-authenticated caller."""

    def __init__(
        self,
        user_id: str,
        tenant_id: str,
        role: UserRole = UserRole.USER,
        display_name: str | None = None,
    ):
        if not tenant_id:
            raise ValueError("tenant_id is required")
        normalized = user_id.strip() if role is UserRole.BUSINESSHEAD else normalize_member_id(user_id)
        if not normalized:
            raise ValueError("user_id is required")
        self._identity = CallerIdentity(
            user_id=normalized,
            tenant_id=tenant_id,
            role=role,
            display_name=display_name,
        )

    def resolve(self) -> CallerIdentity:
        return self._identity
