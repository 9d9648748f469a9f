"""
Recurrence calculation for disposal schedules.

next_occurrence() is pure: it never touches the database. Month-based
patterns clamp to the last day of the target month (Jan 31 + 1 month ->
Feb 28/29) instead of spilling into the following month.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from dateutil.relativedelta import relativedelta


RECURRENCE_PATTERNS = ("daily", "weekly", "biweekly", "monthly", "quarterly", "yearly")

_STEPS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "biweekly": timedelta(days=14),
    "monthly": relativedelta(months=1),
    "quarterly": relativedelta(months=3),
    "yearly": relativedelta(years=1),
}

# Fields carried over from a completed recurring entry to its successor
SUCCESSOR_FIELDS = (
    "waste_item_id",
    "assigned_to",
    "notes",
    "reminder_dates",
    "is_recurring",
    "recurrence_pattern",
    "recurrence_end_date",
    "priority",
    "disposal_method",
    "quantity",
    "unit",
    "created_by",
)


def next_occurrence(from_date: datetime, pattern: Optional[str]) -> Optional[datetime]:
    """
    Compute the next occurrence after from_date for a recurrence pattern.

    Args:
        from_date: Last occurrence (wall-clock arithmetic on the value as given)
        pattern: daily|weekly|biweekly|monthly|quarterly|yearly

    Returns:
        The next occurrence, or None for an unknown pattern
    """
    step = _STEPS.get(pattern or "")
    if step is None:
        return None
    return from_date + step


def successor_fields(source: Any) -> Dict[str, Any]:
    """Descriptive fields copied from a completed entry into its successor."""
    fields = {name: getattr(source, name) for name in SUCCESSOR_FIELDS}
    fields["reminder_dates"] = list(fields["reminder_dates"] or [])
    return fields
