import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


STATUSES = ("scheduled", "rescheduled", "completed", "cancelled", "overdue")
TERMINAL_STATUSES = ("completed", "cancelled")
OPEN_STATUSES = ("scheduled", "rescheduled")
PRIORITIES = ("low", "medium", "high", "critical")
HAZARD_LEVELS = ("low", "medium", "high", "critical")

# Dates accept ISO strings (naive = reference timezone) or datetimes
Timestamp = Union[datetime, str]


class DisposalScheduleCreate(BaseModel):
    # Required fields are checked by the store so a missing one is a 400, not a 422
    waste_item_id: Optional[Union[uuid.UUID, str]] = None
    scheduled_date: Optional[Timestamp] = None
    assigned_to: Optional[Union[uuid.UUID, str]] = None
    notes: Optional[str] = None
    reminder_dates: Optional[Any] = None
    is_recurring: Optional[bool] = None
    recurrence_pattern: Optional[str] = None
    recurrence_end_date: Optional[Timestamp] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    disposal_method: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None


class DisposalSchedulePatch(BaseModel):
    """
    Partial update. Only fields present in the request body are applied;
    an explicit null clears the field (see model_fields_set).
    """
    scheduled_date: Optional[Timestamp] = None
    assigned_to: Optional[Union[uuid.UUID, str]] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    reminder_dates: Optional[Any] = None
    priority: Optional[str] = None
    disposal_method: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None
    is_recurring: Optional[bool] = None
    recurrence_pattern: Optional[str] = None
    recurrence_end_date: Optional[Timestamp] = None


class RescheduleRequest(BaseModel):
    scheduled_date: Timestamp
    assigned_to: Optional[Union[uuid.UUID, str]] = None
    notes: Optional[str] = None


class ReminderRequest(BaseModel):
    reminder_dates: Any = None


class CompleteRequest(BaseModel):
    actual_date: Optional[Timestamp] = None
    notes: Optional[str] = None


class BatchImportRequest(BaseModel):
    # Items stay untyped so one malformed entry is reported per item
    schedules: List[Any] = Field(default_factory=list)


class ScheduleFilters(BaseModel):
    status: Optional[str] = None
    assigned_to: Optional[Union[uuid.UUID, str]] = None
    waste_item_id: Optional[Union[uuid.UUID, str]] = None
    hazard_level: Optional[str] = None
    category: Optional[str] = None
    start_date: Optional[Timestamp] = None
    end_date: Optional[Timestamp] = None


class ConflictReport(BaseModel):
    has_conflict: bool
    count: int
    max_per_day: int
    critical_count: int
    details: List[Dict[str, Any]] = []


class BatchItemResult(BaseModel):
    index: int
    id: uuid.UUID


class BatchItemError(BaseModel):
    index: int
    error: str


class BatchResult(BaseModel):
    success_count: int
    error_count: int
    results: List[BatchItemResult] = []
    error_details: List[BatchItemError] = []
