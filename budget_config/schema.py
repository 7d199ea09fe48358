"""
Configuration schema (``budget_config.schema``).

Frozen dataclasses describing every tunable of the budget services. Values
are validated in ``__post_init__`` so an invalid file never produces a
config object.
"""

from __future__ import annotations

from dataclasses import dataclass


class ConfigurationError(ValueError):
    """A configuration value is missing, mistyped or out of range."""


@dataclass(frozen=True)
class RemarkConfig:
    """Remarks written automatically for admin decisions without one."""

    admin_approved: str = "Admin approved"
    admin_rejected: str = "Admin Rejected"


@dataclass(frozen=True)
class LoadConfig:
    """Dashboard bulk load fan-out."""

    max_workers: int = 8

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ConfigurationError("load.max_workers must be >= 1")


@dataclass(frozen=True)
class DelegationConfig:
    max_days: int = 30

    def __post_init__(self) -> None:
        if self.max_days < 1:
            raise ConfigurationError("delegation.max_days must be >= 1")


@dataclass(frozen=True)
class MembershipConfig:
    """Compare-and-set attempts when appending to a project's team list."""

    write_attempts: int = 3

    def __post_init__(self) -> None:
        if self.write_attempts < 1:
            raise ConfigurationError("membership.write_attempts must be >= 1")


@dataclass(frozen=True)
class BudgetConfig:
    config_id: str = "default"
    labour_item_type: str = "Labour"
    log_level: str = "INFO"
    database_url: str | None = None
    remarks: RemarkConfig = RemarkConfig()
    load: LoadConfig = LoadConfig()
    delegation: DelegationConfig = DelegationConfig()
    membership: MembershipConfig = MembershipConfig()

    def __post_init__(self) -> None:
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Unknown log_level: {self.log_level}")
