"""Typed access to process environment variables.

Blank values are treated exactly like unset ones so an empty line in `.env`
never counts as configuration.
"""

from __future__ import annotations

import os
from typing import Dict, Iterable, Mapping, Optional, Union


TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


class MissingEnvironmentVariableError(Exception):
    """Raised when one or more required variables are unset or blank."""

    def __init__(self, variables: Iterable[str]):
        self.variables = list(variables)
        super().__init__(f"Missing environment variables: {', '.join(self.variables)}")


def read_env(name: str) -> Optional[str]:
    raw = os.environ.get(name)
    if not isinstance(raw, str):
        return None
    value = raw.strip()
    return value if value else None


def read_bool_env(name: str) -> Optional[bool]:
    """Parse a boolean flag; unrecognised values read as unset."""
    value = read_env(name)
    if value is None:
        return None
    normalized = value.lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    return None


def read_int_env(name: str, default: int) -> int:
    value = read_env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def require_env(names: Union[str, Iterable[str]]) -> Dict[str, str]:
    """Resolve every name or raise listing all of the missing ones."""
    wanted = [names] if isinstance(names, str) else list(names)
    missing = []
    resolved: Dict[str, str] = {}
    for name in wanted:
        value = read_env(name)
        if value is None:
            missing.append(name)
            continue
        resolved[name] = value
    if missing:
        raise MissingEnvironmentVariableError(missing)
    return resolved


def load_credentials(fields: Mapping[str, str]) -> Optional[Dict[str, str]]:
    """Load a credentials bundle keyed by field name.

    `fields` maps bundle field -> environment variable. The bundle is
    all-or-nothing: if any variable is missing the integration counts as
    not configured and None is returned.
    """
    try:
        resolved = require_env(fields.values())
    except MissingEnvironmentVariableError:
        return None
    return {field: resolved[env_name] for field, env_name in fields.items()}


def first_env(*names: str) -> Optional[str]:
    """Return the first configured value among alternative variable names."""
    for name in names:
        value = read_env(name)
        if value is not None:
            return value
    return None
