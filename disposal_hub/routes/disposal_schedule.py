import uuid
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import DisposalSchedule, User
from ..schemas.disposal import (
    BatchImportRequest,
    CompleteRequest,
    DisposalScheduleCreate,
    DisposalSchedulePatch,
    ReminderRequest,
    RescheduleRequest,
    ScheduleFilters,
)
from ..services.audit import get_audit_logs
from ..services.batch_import import import_batch
from ..services.disposal_conflict import check_conflicts
from ..services.errors import (
    DisposalError,
    InfrastructureError,
    NotFoundError,
    ReferentialError,
    ValidationError,
)
from ..services.schedule_store import ENTITY_TYPE, ScheduleStore
from ..services.time_rules import isoformat_utc


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/waste", tags=["waste"])


_STATUS_CODES = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (ReferentialError, 400),
    (InfrastructureError, 503),
)


def _http_error(exc: DisposalError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)
    return HTTPException(status_code=500, detail=exc.message)


def _serialize_schedule(row: DisposalSchedule) -> Dict[str, Any]:
    item = row.waste_item
    template = item.template if item else None
    return {
        "id": str(row.id),
        "waste_item_id": str(row.waste_item_id),
        "scheduled_date": isoformat_utc(row.scheduled_date),
        "actual_date": isoformat_utc(row.actual_date),
        "completed_at": isoformat_utc(row.completed_at),
        "status": row.status,
        "priority": row.priority,
        "assigned_to": str(row.assigned_to) if row.assigned_to else None,
        "completed_by": str(row.completed_by) if row.completed_by else None,
        "created_by": str(row.created_by) if row.created_by else None,
        "is_recurring": bool(row.is_recurring),
        "recurrence_pattern": row.recurrence_pattern,
        "recurrence_end_date": isoformat_utc(row.recurrence_end_date),
        "reminder_dates": row.reminder_dates or [],
        "reminder_sent": bool(row.reminder_sent),
        "notes": row.notes,
        "disposal_method": row.disposal_method,
        "quantity": row.quantity,
        "unit": row.unit,
        "created_at": isoformat_utc(row.created_at),
        "updated_at": isoformat_utc(row.updated_at),
        # Display fields
        "waste_name": item.name if item else None,
        "waste_location": item.location if item else None,
        "hazard_level": template.hazard_level if template else None,
        "category": template.category if template else None,
        "color": template.color if template else None,
        "icon": template.icon if template else None,
        "assigned_to_name": row.assignee.name if row.assignee else None,
        "assigned_to_email": row.assignee.email if row.assignee else None,
        "completed_by_name": row.completer.name if row.completer else None,
        "created_by_name": row.creator.name if row.creator else None,
    }


def _day_report(db: Session, row: DisposalSchedule) -> Optional[Dict[str, Any]]:
    # Load of the entry's day, not counting the entry itself. The write is
    # already committed, so a failed check only drops the report.
    try:
        report = check_conflicts(db, isoformat_utc(row.scheduled_date), exclude_schedule_id=row.id)
    except InfrastructureError as exc:
        logger.warning("conflict_report_unavailable", schedule_id=str(row.id), error=exc.message)
        return None
    return report.model_dump()


@router.get("/schedule")
def list_schedules(
    status: Optional[str] = None,
    assigned_to: Optional[str] = None,
    waste_item_id: Optional[str] = None,
    hazard_level: Optional[str] = None,
    category: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    filters = ScheduleFilters(
        status=status,
        assigned_to=assigned_to,
        waste_item_id=waste_item_id,
        hazard_level=hazard_level,
        category=category,
        start_date=start_date,
        end_date=end_date,
    )
    try:
        rows = ScheduleStore(db).list(filters)
    except DisposalError as exc:
        raise _http_error(exc)
    return [_serialize_schedule(row) for row in rows]


@router.get("/schedule/upcoming")
def upcoming_schedules(
    days: Optional[int] = Query(default=None, ge=0),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    try:
        rows = ScheduleStore(db).upcoming(days=days)
    except DisposalError as exc:
        raise _http_error(exc)
    return [_serialize_schedule(row) for row in rows]


@router.get("/schedule/conflicts")
def schedule_conflicts(
    date: str,
    max_per_day: Optional[int] = None,
    exclude_id: Optional[str] = None,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    try:
        if exclude_id:
            try:
                uuid.UUID(exclude_id)
            except ValueError:
                raise ValidationError("Invalid exclude_id")
        report = check_conflicts(db, date, max_per_day=max_per_day, exclude_schedule_id=exclude_id)
    except DisposalError as exc:
        raise _http_error(exc)
    return report.model_dump()


@router.post("/schedule/batch")
def batch_import_schedules(
    payload: BatchImportRequest,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    try:
        result = import_batch(db, payload.schedules, created_by=me.id)
    except DisposalError as exc:
        raise _http_error(exc)
    return result.model_dump(mode="json")


@router.post("/schedule/mark-overdue")
def mark_overdue_schedules(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    try:
        count = ScheduleStore(db).mark_overdue(actor_id=me.id)
    except DisposalError as exc:
        raise _http_error(exc)
    return {"updated": count}


@router.get("/schedule/{schedule_id}")
def get_schedule(schedule_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    try:
        row = ScheduleStore(db).get(schedule_id)
    except DisposalError as exc:
        raise _http_error(exc)
    return _serialize_schedule(row)


@router.get("/schedule/{schedule_id}/history")
def schedule_history(
    schedule_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    """Audit trail of one entry, newest first. Deleted entries keep their history."""
    try:
        entity_id = uuid.UUID(schedule_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Disposal schedule not found")
    logs = get_audit_logs(db, entity_type=ENTITY_TYPE, entity_id=str(entity_id), limit=limit, offset=offset)
    if not logs and offset == 0:
        raise HTTPException(status_code=404, detail="Disposal schedule not found")
    return [
        {
            "id": str(log.id),
            "action": log.action,
            "actor_id": str(log.actor_id) if log.actor_id else None,
            "source": log.source,
            "changes": log.changes_json,
            "context": log.context,
            "timestamp": isoformat_utc(log.timestamp_utc),
        }
        for log in logs
    ]


@router.post("/schedule", status_code=201)
def create_schedule(
    payload: DisposalScheduleCreate,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    try:
        row = ScheduleStore(db).create(payload, created_by=me.id)
        conflicts = _day_report(db, row)
    except DisposalError as exc:
        raise _http_error(exc)
    return {**_serialize_schedule(row), "conflicts": conflicts}


@router.patch("/schedule/{schedule_id}")
@router.put("/schedule/{schedule_id}")
def update_schedule(
    schedule_id: str,
    payload: DisposalSchedulePatch,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    try:
        row = ScheduleStore(db).update(schedule_id, payload, actor_id=me.id)
    except DisposalError as exc:
        raise _http_error(exc)
    return _serialize_schedule(row)


@router.post("/schedule/{schedule_id}/reschedule")
def reschedule_schedule(
    schedule_id: str,
    payload: RescheduleRequest,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    changes = {name: getattr(payload, name) for name in payload.model_fields_set if name != "scheduled_date"}
    try:
        row = ScheduleStore(db).reschedule(schedule_id, payload.scheduled_date, actor_id=me.id, **changes)
        conflicts = _day_report(db, row)
    except DisposalError as exc:
        raise _http_error(exc)
    return {**_serialize_schedule(row), "conflicts": conflicts}


@router.post("/schedule/{schedule_id}/reminder")
def set_schedule_reminders(
    schedule_id: str,
    payload: ReminderRequest,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    try:
        row = ScheduleStore(db).set_reminders(schedule_id, payload.reminder_dates, actor_id=me.id)
    except DisposalError as exc:
        raise _http_error(exc)
    return _serialize_schedule(row)


@router.post("/schedule/{schedule_id}/complete")
def complete_schedule(
    schedule_id: str,
    payload: Optional[CompleteRequest] = None,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    payload = payload or CompleteRequest()
    try:
        result = ScheduleStore(db).complete(
            schedule_id,
            actual_date=payload.actual_date,
            notes=payload.notes,
            completed_by=me.id,
        )
    except DisposalError as exc:
        raise _http_error(exc)
    return {
        "schedule": _serialize_schedule(result.schedule),
        "next_occurrence": isoformat_utc(result.next_occurrence_date),
        "successor_id": str(result.successor.id) if result.successor else None,
        "successor_error": result.successor_error,
    }


@router.delete("/schedule/{schedule_id}")
def delete_schedule(schedule_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    try:
        ScheduleStore(db).delete(schedule_id, actor_id=me.id)
    except DisposalError as exc:
        raise _http_error(exc)
    return {"status": "ok"}
