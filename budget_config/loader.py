"""
Configuration Loader (``budget_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``budget_config.schema.BudgetConfig``. Runtime callers go through
``budget_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ConfigurationError``.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from budget_config.schema import (
    BudgetConfig,
    ConfigurationError,
    DelegationConfig,
    LoadConfig,
    MembershipConfig,
    RemarkConfig,
)

_SECTIONS: dict[str, type] = {
    "remarks": RemarkConfig,
    "load": LoadConfig,
    "delegation": DelegationConfig,
    "membership": MembershipConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    return data


def _build(cls: type, data: dict[str, Any], where: str) -> Any:
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"{where}: unknown keys {sorted(unknown)}")
    try:
        return cls(**data)
    except TypeError as exc:
        raise ConfigurationError(f"{where}: {exc}") from exc


def parse_config(data: dict[str, Any]) -> BudgetConfig:
    """Parse a configuration mapping into a BudgetConfig."""
    values = dict(data)
    for section, cls in _SECTIONS.items():
        raw = values.pop(section, None)
        if raw is None:
            continue
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{section}: must be a mapping")
        values[section] = _build(cls, raw, section)
    return _build(BudgetConfig, values, "config")


def load_config(path: Path) -> BudgetConfig:
    return parse_config(load_yaml_file(path))
