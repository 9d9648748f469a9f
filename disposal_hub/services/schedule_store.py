"""
Disposal schedule store.

Owns creation, listing, partial updates, completion and deletion of
disposal schedule entries. Every mutation follows the same pipeline:
validate -> check references -> persist -> audit.
"""
import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Union

import structlog
from pydantic import BaseModel
from sqlalchemy import and_, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import DisposalSchedule, User, WasteItem, WasteTemplate
from ..schemas.disposal import (
    HAZARD_LEVELS,
    OPEN_STATUSES,
    PRIORITIES,
    STATUSES,
    ScheduleFilters,
)
from .audit import compute_diff, create_audit_log
from .errors import InfrastructureError, NotFoundError, ReferentialError, ValidationError
from .recurrence import RECURRENCE_PATTERNS, next_occurrence, successor_fields
from .time_rules import is_date_only, local_day_bounds, storage_to_local, to_storage, utcnow


logger = structlog.get_logger(__name__)

ENTITY_TYPE = "disposal_schedule"

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

UPDATABLE_FIELDS = (
    "scheduled_date",
    "assigned_to",
    "notes",
    "status",
    "reminder_dates",
    "priority",
    "disposal_method",
    "quantity",
    "unit",
    "is_recurring",
    "recurrence_pattern",
    "recurrence_end_date",
)

_HAZARD_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}


def sanitize_notes(value: Optional[str]) -> Optional[str]:
    if value is None or not isinstance(value, str):
        return value
    return _CONTROL_RE.sub("", _SCRIPT_RE.sub("", value))


@dataclass
class CompletionResult:
    schedule: DisposalSchedule
    next_occurrence_date: Optional[datetime] = None
    successor: Optional[DisposalSchedule] = None
    successor_error: Optional[str] = None


def _present_fields(payload: Union[BaseModel, Mapping[str, Any], None]) -> Dict[str, Any]:
    """Fields explicitly supplied by the caller, including explicit nulls."""
    if payload is None:
        return {}
    if isinstance(payload, BaseModel):
        return {name: getattr(payload, name) for name in payload.model_fields_set}
    if isinstance(payload, Mapping):
        return dict(payload)
    raise ValidationError("Schedule payload must be an object")


def _parse_uuid(value: Any, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"Invalid {field}")


def _check_choice(value: Any, choices, field: str) -> str:
    if value not in choices:
        raise ValidationError(f"Invalid {field}: {value!r}. Expected one of: {', '.join(choices)}")
    return value


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _reminder_list(value: Any) -> list:
    if not isinstance(value, list):
        raise ValidationError("reminder_dates must be a list")
    return [item.isoformat() if isinstance(item, datetime) else item for item in value]


class ScheduleStore:
    """Repository + service for disposal schedule entries"""

    def __init__(self, db: Session, timezone_str: Optional[str] = None):
        self.db = db
        self.timezone_str = timezone_str or settings.tz_default

    # Parsing helpers

    def _timestamp(self, value: Any, field: str) -> datetime:
        try:
            return to_storage(value, self.timezone_str)
        except (TypeError, ValueError, OverflowError):
            raise ValidationError(f"Invalid {field}: {value!r}")

    def _ensure_waste_item(self, waste_item_id: uuid.UUID) -> None:
        if self.db.get(WasteItem, waste_item_id) is None:
            raise ReferentialError("Waste item not found")

    def _ensure_user(self, user_id: Optional[uuid.UUID]) -> None:
        if user_id is not None and self.db.get(User, user_id) is None:
            raise ReferentialError("Assigned user not found")

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("store_failure", operation=operation, error=str(exc))
            raise InfrastructureError(f"Database error during {operation}") from exc

    def _snapshot(self, row: DisposalSchedule) -> Dict[str, Any]:
        return {name: getattr(row, name) for name in UPDATABLE_FIELDS}

    # Reads

    def get(self, schedule_id: Union[str, uuid.UUID]) -> DisposalSchedule:
        try:
            schedule_uuid = _parse_uuid(schedule_id, "schedule id")
        except ValidationError:
            raise NotFoundError("Disposal schedule not found")
        with self._guard("get"):
            row = self.db.get(DisposalSchedule, schedule_uuid)
        if row is None:
            raise NotFoundError("Disposal schedule not found")
        return row

    def list(self, filters: Union[ScheduleFilters, Mapping[str, Any], None] = None) -> List[DisposalSchedule]:
        """
        List schedule entries. Every supplied filter narrows the result (AND);
        unset filters impose nothing. Sorted by scheduled_date ascending.
        """
        given = {k: v for k, v in _present_fields(filters).items() if v is not None and v != ""}
        query = (
            self.db.query(DisposalSchedule)
            .outerjoin(WasteItem, DisposalSchedule.waste_item_id == WasteItem.id)
            .outerjoin(WasteTemplate, WasteItem.template_id == WasteTemplate.id)
        )

        if "status" in given:
            query = query.filter(DisposalSchedule.status == _check_choice(given["status"], STATUSES, "status"))
        if "assigned_to" in given:
            query = query.filter(DisposalSchedule.assigned_to == _parse_uuid(given["assigned_to"], "assigned_to"))
        if "waste_item_id" in given:
            query = query.filter(DisposalSchedule.waste_item_id == _parse_uuid(given["waste_item_id"], "waste_item_id"))
        if "hazard_level" in given:
            query = query.filter(
                WasteTemplate.hazard_level == _check_choice(given["hazard_level"], HAZARD_LEVELS, "hazard_level")
            )
        if "category" in given:
            query = query.filter(WasteTemplate.category == given["category"])
        if "start_date" in given:
            query = query.filter(DisposalSchedule.scheduled_date >= self._timestamp(given["start_date"], "start_date"))
        if "end_date" in given:
            end = given["end_date"]
            if is_date_only(end):
                # A bare end date covers that whole local day
                try:
                    end_bound = local_day_bounds(end, self.timezone_str)[1]
                except (TypeError, ValueError, OverflowError):
                    raise ValidationError(f"Invalid end_date: {end!r}")
            else:
                end_bound = self._timestamp(end, "end_date")
            query = query.filter(DisposalSchedule.scheduled_date <= end_bound)

        with self._guard("list"):
            return query.order_by(DisposalSchedule.scheduled_date.asc()).all()

    def upcoming(self, days: Optional[int] = None, now: Optional[datetime] = None) -> List[DisposalSchedule]:
        """Open entries due within the next `days` days, most hazardous first per date."""
        if days is None:
            days = settings.upcoming_days
        if days < 0:
            raise ValidationError("days must not be negative")
        start = now or utcnow()
        end = start + timedelta(days=days)
        hazard_rank = case(_HAZARD_RANK, value=WasteTemplate.hazard_level, else_=len(_HAZARD_RANK))
        query = (
            self.db.query(DisposalSchedule)
            .outerjoin(WasteItem, DisposalSchedule.waste_item_id == WasteItem.id)
            .outerjoin(WasteTemplate, WasteItem.template_id == WasteTemplate.id)
            .filter(
                and_(DisposalSchedule.scheduled_date >= start, DisposalSchedule.scheduled_date <= end),
                DisposalSchedule.status.in_(OPEN_STATUSES),
            )
            .order_by(DisposalSchedule.scheduled_date.asc(), hazard_rank.asc())
        )
        with self._guard("upcoming"):
            return query.all()

    # Creation

    def _validate_candidate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not data.get("waste_item_id") or not data.get("scheduled_date"):
            raise ValidationError("waste_item_id and scheduled_date are required")

        values: Dict[str, Any] = {
            "waste_item_id": _parse_uuid(data["waste_item_id"], "waste_item_id"),
            "scheduled_date": self._timestamp(data["scheduled_date"], "scheduled_date"),
            "priority": _check_choice(data.get("priority") or "medium", PRIORITIES, "priority"),
            "status": _check_choice(data.get("status") or "scheduled", STATUSES, "status"),
            "notes": sanitize_notes(data.get("notes")),
            "disposal_method": data.get("disposal_method"),
            "unit": data.get("unit"),
        }

        assigned_to = data.get("assigned_to")
        values["assigned_to"] = _parse_uuid(assigned_to, "assigned_to") if assigned_to is not None else None

        reminders = data.get("reminder_dates")
        values["reminder_dates"] = _reminder_list(reminders) if reminders is not None else []

        quantity = data.get("quantity")
        if quantity is not None:
            try:
                quantity = float(quantity)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid quantity: {quantity!r}")
        values["quantity"] = quantity

        end_date = data.get("recurrence_end_date")
        values.update(self._recurrence_values(
            _as_bool(data.get("is_recurring")),
            data.get("recurrence_pattern") or None,
            self._timestamp(end_date, "recurrence_end_date") if end_date else None,
        ))
        return values

    @staticmethod
    def _recurrence_values(
        is_recurring: bool,
        pattern: Optional[str],
        end_date: Optional[datetime],
    ) -> Dict[str, Any]:
        # recurrence_pattern is set if and only if the entry recurs
        if is_recurring and not pattern:
            raise ValidationError("recurrence_pattern is required for recurring disposals")
        if pattern and not is_recurring:
            raise ValidationError("recurrence_pattern is only allowed for recurring disposals")
        if pattern:
            _check_choice(pattern, RECURRENCE_PATTERNS, "recurrence_pattern")
        return {
            "is_recurring": is_recurring,
            "recurrence_pattern": pattern,
            "recurrence_end_date": end_date,
        }

    def add(
        self,
        candidate: Union[BaseModel, Mapping[str, Any]],
        created_by: Optional[uuid.UUID] = None,
        source: str = "api",
    ) -> DisposalSchedule:
        """
        Validate and stage a new entry in the current transaction without committing.
        """
        values = self._validate_candidate(_present_fields(candidate))
        self._ensure_waste_item(values["waste_item_id"])
        self._ensure_user(values["assigned_to"])

        row = DisposalSchedule(**values, created_by=created_by)
        self.db.add(row)
        self.db.flush()

        create_audit_log(
            db=self.db,
            entity_type=ENTITY_TYPE,
            entity_id=str(row.id),
            action="CREATE",
            actor_id=str(created_by) if created_by else None,
            source=source,
            changes_json={"after": self._snapshot(row)},
            context={"waste_item_id": str(row.waste_item_id)},
            commit=False,
        )
        return row

    def create(
        self,
        candidate: Union[BaseModel, Mapping[str, Any]],
        created_by: Optional[uuid.UUID] = None,
    ) -> DisposalSchedule:
        with self._guard("create"):
            row = self.add(candidate, created_by=created_by)
            self.db.commit()
            self.db.refresh(row)
        logger.info(
            "schedule_created",
            schedule_id=str(row.id),
            waste_item_id=str(row.waste_item_id),
            scheduled_date=row.scheduled_date.isoformat(),
            is_recurring=row.is_recurring,
        )
        return row

    # Updates

    def _resolve_changes(self, row: DisposalSchedule, fields: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        changes: Dict[str, Any] = {}
        for name, value in fields.items():
            if name in ("scheduled_date", "status", "priority") and value is None:
                raise ValidationError(f"{name} cannot be cleared")
            if name == "scheduled_date":
                changes[name] = self._timestamp(value, name)
            elif name == "assigned_to":
                user_id = _parse_uuid(value, name) if value is not None else None
                self._ensure_user(user_id)
                changes[name] = user_id
            elif name == "notes":
                changes[name] = sanitize_notes(value)
            elif name == "status":
                changes[name] = _check_choice(value, STATUSES, name)
            elif name == "priority":
                changes[name] = _check_choice(value, PRIORITIES, name)
            elif name == "reminder_dates":
                changes[name] = _reminder_list(value) if value is not None else []
            elif name == "quantity" and value is not None:
                try:
                    changes[name] = float(value)
                except (TypeError, ValueError):
                    raise ValidationError(f"Invalid quantity: {value!r}")
            elif name == "is_recurring":
                changes[name] = _as_bool(value)
            elif name == "recurrence_pattern":
                changes[name] = value or None
            elif name == "recurrence_end_date":
                changes[name] = self._timestamp(value, name) if value else None
            else:
                changes[name] = value

        recurrence_keys = ("is_recurring", "recurrence_pattern", "recurrence_end_date")
        if any(key in changes for key in recurrence_keys):
            is_recurring = changes.get("is_recurring", row.is_recurring)
            if "is_recurring" in changes and not is_recurring and "recurrence_pattern" not in changes:
                changes["recurrence_pattern"] = None
            changes.update(self._recurrence_values(
                is_recurring,
                changes.get("recurrence_pattern", row.recurrence_pattern),
                changes.get("recurrence_end_date", row.recurrence_end_date),
            ))
        return changes

    def _apply(
        self,
        row: DisposalSchedule,
        changes: Dict[str, Any],
        action: str,
        actor_id: Optional[uuid.UUID],
    ) -> DisposalSchedule:
        before = self._snapshot(row)
        for name, value in changes.items():
            setattr(row, name, value)
        row.updated_at = utcnow()
        with self._guard(action.lower()):
            self.db.flush()
            create_audit_log(
                db=self.db,
                entity_type=ENTITY_TYPE,
                entity_id=str(row.id),
                action=action,
                actor_id=str(actor_id) if actor_id else None,
                source="api",
                changes_json=compute_diff(before, self._snapshot(row)),
                context={"waste_item_id": str(row.waste_item_id)},
                commit=False,
            )
            self.db.commit()
            self.db.refresh(row)
        return row

    def update(
        self,
        schedule_id: Union[str, uuid.UUID],
        patch: Union[BaseModel, Mapping[str, Any]],
        actor_id: Optional[uuid.UUID] = None,
    ) -> DisposalSchedule:
        """
        Apply a partial update. Omitted fields are untouched; fields present
        with None are cleared.
        """
        row = self.get(schedule_id)
        fields = _present_fields(patch)
        if not fields:
            raise ValidationError("No fields to update")
        changes = self._resolve_changes(row, fields)
        row = self._apply(row, changes, "UPDATE", actor_id)
        logger.info("schedule_updated", schedule_id=str(row.id), fields=sorted(changes))
        return row

    def reschedule(
        self,
        schedule_id: Union[str, uuid.UUID],
        scheduled_date: Any,
        actor_id: Optional[uuid.UUID] = None,
        **changes: Any,
    ) -> DisposalSchedule:
        """
        Move an open entry to a new date and mark it rescheduled.
        Accepts assigned_to and notes as optional keyword changes.
        """
        extra = set(changes) - {"assigned_to", "notes"}
        if extra:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(extra))}")
        row = self.get(schedule_id)
        if row.status in ("completed", "cancelled"):
            raise ValidationError(f"Cannot reschedule a {row.status} disposal")
        fields = dict(changes, scheduled_date=scheduled_date, status="rescheduled")
        resolved = self._resolve_changes(row, fields)
        row = self._apply(row, resolved, "RESCHEDULE", actor_id)
        logger.info("schedule_rescheduled", schedule_id=str(row.id), scheduled_date=row.scheduled_date.isoformat())
        return row

    def set_reminders(
        self,
        schedule_id: Union[str, uuid.UUID],
        reminder_dates: Any,
        actor_id: Optional[uuid.UUID] = None,
    ) -> DisposalSchedule:
        row = self.get(schedule_id)
        changes = {"reminder_dates": _reminder_list(reminder_dates)}
        row.reminder_sent = False
        return self._apply(row, changes, "REMINDERS", actor_id)

    def delete(self, schedule_id: Union[str, uuid.UUID], actor_id: Optional[uuid.UUID] = None) -> None:
        row = self.get(schedule_id)
        before = self._snapshot(row)
        entity_id = str(row.id)
        waste_item_id = str(row.waste_item_id)
        with self._guard("delete"):
            self.db.delete(row)
            create_audit_log(
                db=self.db,
                entity_type=ENTITY_TYPE,
                entity_id=entity_id,
                action="DELETE",
                actor_id=str(actor_id) if actor_id else None,
                source="api",
                changes_json={"before": before},
                context={"waste_item_id": waste_item_id},
                commit=False,
            )
            self.db.commit()
        logger.info("schedule_deleted", schedule_id=entity_id)

    # Completion and recurrence

    def complete(
        self,
        schedule_id: Union[str, uuid.UUID],
        actual_date: Any = None,
        notes: Optional[str] = None,
        completed_by: Optional[uuid.UUID] = None,
    ) -> CompletionResult:
        """
        Mark an entry completed and, for recurring entries, create the next occurrence.

        The completion is committed on its own; a failed successor insert is
        rolled back separately and reported in CompletionResult.successor_error.
        Completing an already completed or cancelled entry is rejected.
        """
        row = self.get(schedule_id)
        if row.status == "completed":
            raise ValidationError("Disposal already completed")
        if row.status == "cancelled":
            raise ValidationError("Cancelled disposals cannot be completed")

        # Parse inputs before touching the tracked row
        now = utcnow()
        completed_on = self._timestamp(actual_date, "actual_date") if actual_date else now
        clean_notes = sanitize_notes(notes) if notes is not None else row.notes

        before = self._snapshot(row)
        row.status = "completed"
        row.actual_date = completed_on
        row.completed_at = now
        row.completed_by = completed_by
        row.notes = clean_notes
        row.updated_at = now

        with self._guard("complete"):
            self.db.flush()
            create_audit_log(
                db=self.db,
                entity_type=ENTITY_TYPE,
                entity_id=str(row.id),
                action="COMPLETE",
                actor_id=str(completed_by) if completed_by else None,
                source="api",
                changes_json=compute_diff(before, self._snapshot(row)),
                context={"waste_item_id": str(row.waste_item_id), "actual_date": row.actual_date},
                commit=False,
            )
            self.db.commit()
            self.db.refresh(row)
        logger.info("schedule_completed", schedule_id=str(row.id))

        result = CompletionResult(schedule=row)
        if row.is_recurring:
            self._create_successor(row, result)
        return result

    def _create_successor(self, row: DisposalSchedule, result: CompletionResult) -> None:
        local_date = storage_to_local(row.scheduled_date, self.timezone_str)
        try:
            next_local = next_occurrence(local_date, row.recurrence_pattern)
            next_date = to_storage(next_local, self.timezone_str) if next_local else None
        except (ValueError, OverflowError):
            logger.warning("recurrence_out_of_range", schedule_id=str(row.id), pattern=row.recurrence_pattern)
            return
        if next_date is None:
            logger.warning("unknown_recurrence_pattern", schedule_id=str(row.id), pattern=row.recurrence_pattern)
            return
        if row.recurrence_end_date is not None and next_date > row.recurrence_end_date:
            logger.info(
                "recurrence_window_closed",
                schedule_id=str(row.id),
                next_date=next_date.isoformat(),
                recurrence_end_date=row.recurrence_end_date.isoformat(),
            )
            return

        result.next_occurrence_date = next_date
        source_id = str(row.id)
        try:
            successor = DisposalSchedule(**successor_fields(row), scheduled_date=next_date, status="scheduled")
            self.db.add(successor)
            self.db.flush()
            create_audit_log(
                db=self.db,
                entity_type=ENTITY_TYPE,
                entity_id=str(successor.id),
                action="CREATE",
                actor_id=str(row.created_by) if row.created_by else None,
                source="recurrence",
                changes_json={"after": self._snapshot(successor)},
                context={"predecessor_id": source_id},
                commit=False,
            )
            self.db.commit()
            self.db.refresh(successor)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("successor_creation_failed", schedule_id=source_id, error=str(exc))
            result.successor_error = "Failed to create next occurrence"
            return

        result.successor = successor
        logger.info("successor_created", schedule_id=source_id, successor_id=str(successor.id),
                    scheduled_date=next_date.isoformat())

    def mark_overdue(self, now: Optional[datetime] = None, actor_id: Optional[uuid.UUID] = None) -> int:
        """Flag open entries whose scheduled date has passed. Returns the number changed."""
        cutoff = now or utcnow()
        with self._guard("mark_overdue"):
            rows = (
                self.db.query(DisposalSchedule)
                .filter(
                    DisposalSchedule.status.in_(OPEN_STATUSES),
                    DisposalSchedule.scheduled_date < cutoff,
                )
                .all()
            )
            for row in rows:
                previous = row.status
                row.status = "overdue"
                row.updated_at = cutoff
                create_audit_log(
                    db=self.db,
                    entity_type=ENTITY_TYPE,
                    entity_id=str(row.id),
                    action="OVERDUE",
                    actor_id=str(actor_id) if actor_id else None,
                    source="system",
                    changes_json={"status": {"before": previous, "after": "overdue"}},
                    commit=False,
                )
            self.db.commit()
        if rows:
            logger.info("schedules_marked_overdue", count=len(rows))
        return len(rows)
