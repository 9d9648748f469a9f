"""
Batch import of disposal schedules.

Candidates are processed in input order, each inside its own SAVEPOINT, so a
rejected entry never undoes the ones imported before it.
"""
import uuid
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..schemas.disposal import BatchItemError, BatchItemResult, BatchResult
from .errors import InfrastructureError, ReferentialError, ValidationError
from .schedule_store import ScheduleStore


logger = structlog.get_logger(__name__)


def import_batch(
    db: Session,
    candidates: Sequence[Any],
    created_by: Optional[uuid.UUID] = None,
    timezone_str: Optional[str] = None,
) -> BatchResult:
    """
    Import many schedule candidates, recording per-item outcomes.

    Raises:
        ValidationError: the candidate list is empty
        InfrastructureError: the database cannot be reached at all
    """
    if not candidates:
        raise ValidationError("No schedules provided")

    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("batch_import_unavailable", error=str(exc))
        raise InfrastructureError("Database unavailable") from exc

    store = ScheduleStore(db, timezone_str=timezone_str)
    results = []
    errors = []

    for index, candidate in enumerate(candidates):
        if not isinstance(candidate, dict):
            errors.append(BatchItemError(index=index, error="Schedule must be an object"))
            continue

        savepoint = db.begin_nested()
        try:
            row = store.add(candidate, created_by=created_by, source="batch")
            savepoint.commit()
        except (ValidationError, ReferentialError) as exc:
            savepoint.rollback()
            errors.append(BatchItemError(index=index, error=exc.message))
            continue
        except SQLAlchemyError as exc:
            savepoint.rollback()
            logger.warning("batch_item_failed", index=index, error=str(exc))
            errors.append(BatchItemError(index=index, error="Database error"))
            continue
        except Exception:
            savepoint.rollback()
            raise
        results.append(BatchItemResult(index=index, id=row.id))

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("batch_import_commit_failed", error=str(exc))
        raise InfrastructureError("Database error during batch import") from exc

    logger.info(
        "batch_import_finished",
        total=len(candidates),
        success_count=len(results),
        error_count=len(errors),
    )
    return BatchResult(
        success_count=len(results),
        error_count=len(errors),
        results=results,
        error_details=errors,
    )
