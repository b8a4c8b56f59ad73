"""
Technician visibility flags.

Clients send visibility as true/false, 0/1 or strings like "1"/"true". All of
them are reduced to a plain bool here, at the request boundary. Any non-zero
number and any string outside the false words means visible.
"""
from typing import Any, Optional

_FALSE_STRINGS = {"0", "false", "no", "off", ""}


def to_visibility_flag(value: Any) -> bool:
    """Canonicalize a request-side visibility value. Absent means not visible."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    raise ValueError(f"Unrecognized visibility value: {value!r}")


def effective_visibility(permission: Optional[bool]) -> bool:
    """Stored permission for (order, document); no row means visible."""
    if permission is None:
        return True
    return bool(permission)
