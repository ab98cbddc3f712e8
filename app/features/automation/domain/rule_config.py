"""
Automation rule config parsing.

Config maps are free-form JSON edited from the admin console, so every
numeric value is coerced and clamped instead of rejected.
"""

import math
from typing import Any

from .models import CLINIC_APPT_REMINDERS_JOB, PG_MONTHLY_DUES_JOB

DUE_DAY_RANGE = (1, 28)
WINDOW_HOURS_RANGE = (1, 72)
LEAD_TIME_HOURS_RANGE = (1, 168)

# key -> (default, minimum, maximum)
JOB_CONFIG_SCHEMA: dict[str, dict[str, tuple[int, int, int]]] = {
    PG_MONTHLY_DUES_JOB: {
        "due_day": (5, *DUE_DAY_RANGE),
    },
    CLINIC_APPT_REMINDERS_JOB: {
        "window_hours": (24, *WINDOW_HOURS_RANGE),
        "lead_time_hours": (24, *LEAD_TIME_HOURS_RANGE),
    },
}


def clamp_number(value: float, minimum: float, maximum: float) -> float:
    return min(max(value, minimum), maximum)


def read_int_config(
    config: dict[str, Any] | None, key: str, default: int, minimum: int, maximum: int
) -> int:
    """
    Read an integer setting, clamped to [minimum, maximum].

    Missing, boolean, non-numeric and non-finite values fall back to
    ``default``, as does a config that is not a mapping. Fractions are
    truncated after clamping.
    """
    if not isinstance(config, dict):
        return default

    raw = config.get(key)
    if raw is None or isinstance(raw, bool):
        return default

    try:
        number = float(raw)
    except (TypeError, ValueError):
        return default

    if not math.isfinite(number):
        return default

    return int(clamp_number(number, minimum, maximum))


def resolve_job_config(job: str, config: dict[str, Any] | None) -> dict[str, int]:
    """Return every known setting for ``job`` with defaults and clamping applied."""
    schema = JOB_CONFIG_SCHEMA.get(job)
    if schema is None:
        raise ValueError(f"Unknown automation job '{job}'")

    return {
        key: read_int_config(config, key, default, minimum, maximum)
        for key, (default, minimum, maximum) in schema.items()
    }


def normalize_rule_config(job: str, config: dict[str, Any] | None) -> dict[str, Any]:
    """Config to persist: caller's extra keys kept, known keys resolved."""
    normalized = dict(config) if isinstance(config, dict) else {}
    normalized.update(resolve_job_config(job, config))
    return normalized
