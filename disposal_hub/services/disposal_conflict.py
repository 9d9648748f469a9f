"""
Disposal conflict detection service.
ADVISORY rule: flag days whose open disposal count reaches the per-day ceiling.
Nothing here blocks a create or reschedule; callers decide whether to proceed.
"""
import uuid
from datetime import date, datetime
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.models import DisposalSchedule, WasteItem, WasteTemplate
from ..config import settings
from ..schemas.disposal import ConflictReport, TERMINAL_STATUSES
from .errors import InfrastructureError, ValidationError
from .time_rules import isoformat_utc, local_day_bounds


def get_disposals_on_day(
    db: Session,
    date_val: Union[str, date, datetime],
    timezone_str: Optional[str] = None,
    exclude_schedule_id: Optional[Union[str, uuid.UUID]] = None,
) -> list:
    """
    Get open (not completed/cancelled) disposals on the local calendar day of date_val.

    Args:
        db: Database session
        date_val: Any moment within the day (date, datetime or ISO string)
        timezone_str: Reference timezone for the day boundaries
        exclude_schedule_id: Optional schedule ID to exclude (for reschedules)

    Returns:
        List of (DisposalSchedule, hazard_level) tuples
    """
    try:
        start_of_day, end_of_day = local_day_bounds(date_val, timezone_str)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"Invalid date: {date_val!r}")

    query = (
        db.query(DisposalSchedule, WasteTemplate.hazard_level)
        .outerjoin(WasteItem, DisposalSchedule.waste_item_id == WasteItem.id)
        .outerjoin(WasteTemplate, WasteItem.template_id == WasteTemplate.id)
        .filter(
            DisposalSchedule.scheduled_date >= start_of_day,
            DisposalSchedule.scheduled_date <= end_of_day,
            DisposalSchedule.status.notin_(TERMINAL_STATUSES),
        )
    )

    if exclude_schedule_id:
        try:
            exclude_uuid = uuid.UUID(str(exclude_schedule_id))
        except ValueError:
            raise ValidationError(f"Invalid schedule id: {exclude_schedule_id!r}")
        query = query.filter(DisposalSchedule.id != exclude_uuid)

    try:
        return query.order_by(DisposalSchedule.scheduled_date.asc()).all()
    except SQLAlchemyError as exc:
        db.rollback()
        raise InfrastructureError("Database error during conflict check") from exc


def check_conflicts(
    db: Session,
    date_val: Union[str, date, datetime],
    max_per_day: Optional[int] = None,
    timezone_str: Optional[str] = None,
    exclude_schedule_id: Optional[Union[str, uuid.UUID]] = None,
) -> ConflictReport:
    """
    Check whether a day is overloaded with disposals.

    A day conflicts when its open disposal count reaches max_per_day
    (count >= max_per_day). Critical-hazard entries are counted separately.

    Returns:
        ConflictReport with has_conflict, count, max_per_day, critical_count, details
    """
    if max_per_day is None:
        max_per_day = settings.max_disposals_per_day
    if max_per_day < 1:
        raise ValidationError("max_per_day must be at least 1")

    rows = get_disposals_on_day(db, date_val, timezone_str, exclude_schedule_id)

    details = []
    critical_count = 0
    for schedule, hazard_level in rows:
        if hazard_level == "critical":
            critical_count += 1
        details.append({
            "id": str(schedule.id),
            "waste_item_id": str(schedule.waste_item_id),
            "waste_name": schedule.waste_item.name if schedule.waste_item else None,
            "scheduled_date": isoformat_utc(schedule.scheduled_date),
            "status": schedule.status,
            "priority": schedule.priority,
            "hazard_level": hazard_level,
        })

    count = len(rows)
    return ConflictReport(
        has_conflict=count >= max_per_day,
        count=count,
        max_per_day=max_per_day,
        critical_count=critical_count,
        details=details,
    )
