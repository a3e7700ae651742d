"""
FMS Execution Engine
Due-Date Calculator — pure functions, no database access.

    compute_due_date(anchor, offset_value, offset_unit, offset_days, offset_hours)
    shift_if_weekend(instant, enabled, weekend_day)
    due_date_for_step(anchor, step, skip_weekend, weekend_day)

Offset units:
    hours       anchor + offset_value hours
    days        anchor + offset_value × 24h
    days+hours  anchor + offset_days × 24h + offset_hours

The Instantiator anchors task 0 and every fixed-offset task on the project
start; the state machine anchors a dependent-offset task on its
predecessor's completion instant, always with the successor's own offset.
"""

from datetime import timedelta

from fms.core.exceptions import ValidationError
from fms.models.template import OFFSET_UNITS

# datetime.weekday() value of Sunday
DEFAULT_WEEKEND_DAY = 6


def compute_due_date(anchor, offset_value=0, offset_unit="days",
                     offset_days=None, offset_hours=None):
    """Return ``anchor`` moved forward by the step offset.

    Raises:
        ValidationError: missing anchor, unknown unit or negative offset.
    """
    if anchor is None:
        raise ValidationError("Cannot compute a due date without an anchor instant")
    if offset_unit not in OFFSET_UNITS:
        raise ValidationError(
            f"Invalid offset unit '{offset_unit}'",
            details={"offset_unit": f"must be one of {sorted(OFFSET_UNITS)}"},
        )

    if offset_unit == "hours":
        hours = offset_value or 0
        parts = {"offset_value": hours}
    elif offset_unit == "days":
        hours = (offset_value or 0) * 24
        parts = {"offset_value": offset_value or 0}
    else:
        days = offset_days or 0
        extra = offset_hours or 0
        hours = days * 24 + extra
        parts = {"offset_days": days, "offset_hours": extra}

    negative = {k: "must not be negative" for k, v in parts.items() if v < 0}
    if negative:
        raise ValidationError("Offsets must not be negative", details=negative)

    return anchor + timedelta(hours=hours)


def shift_if_weekend(instant, enabled, weekend_day=DEFAULT_WEEKEND_DAY):
    """Move ``instant`` one day forward if it lands on the weekend day.

    Only applies when the owning template enables the rule.
    """
    if instant is None or not enabled:
        return instant
    if instant.weekday() == weekend_day:
        return instant + timedelta(days=1)
    return instant


def due_date_for_step(anchor, step, skip_weekend=False, weekend_day=DEFAULT_WEEKEND_DAY):
    """Compute a step's due date from ``anchor`` and apply the weekend rule."""
    due = compute_due_date(
        anchor,
        offset_value=step.offset_value,
        offset_unit=step.offset_unit,
        offset_days=step.offset_days,
        offset_hours=step.offset_hours,
    )
    return shift_if_weekend(due, skip_weekend, weekend_day)
