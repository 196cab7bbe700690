from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from .errors import ImplausibleValue
from .policy import ConflictResolutionPolicy


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def check_plausible(
    field_name: str,
    candidate: Any,
    current: Any,
    *,
    policy: ConflictResolutionPolicy,
    now: datetime,
) -> Optional[str]:
    """Return a rejection reason for a numeric candidate, or None if it is fine.

    Two checks: hard bounds from the policy, and an order-of-magnitude jump
    relative to the value the canonical record currently holds.
    """

    value = _as_number(candidate)
    if value is None or field_name not in policy.numeric_bounds:
        return None

    low, high = policy.numeric_bounds[field_name]
    if high is None and field_name == "year_built":
        high = now.year + 1
    if low is not None and value < low:
        return f"below minimum {low:g}"
    if high is not None and value > high:
        return f"above maximum {high:g}"

    held = _as_number(current)
    if field_name in policy.magnitude_fields and held and value:
        ratio = max(value, held) / min(value, held) if min(value, held) > 0 else float("inf")
        if ratio >= policy.max_magnitude_ratio:
            return f"order-of-magnitude change from {held:g}"
    return None


def ensure_plausible(
    field_name: str,
    candidate: Any,
    current: Any,
    *,
    policy: ConflictResolutionPolicy,
    now: datetime,
) -> None:
    reason = check_plausible(field_name, candidate, current, policy=policy, now=now)
    if reason is not None:
        raise ImplausibleValue(field_name, candidate, reason)
