import uuid

import pytest
from sqlalchemy.exc import OperationalError

from disposal_hub.models.models import AuditLog, DisposalSchedule
from disposal_hub.services.batch_import import import_batch
from disposal_hub.services.errors import InfrastructureError, ValidationError


def _candidates(seed, count):
    return [
        {"waste_item_id": str(seed.acid_item.id), "scheduled_date": f"2025-02-{day:02d}T09:00:00"}
        for day in range(1, count + 1)
    ]


class TestImportBatch:
    def test_all_valid(self, db, seed):
        result = import_batch(db, _candidates(seed, 3), created_by=seed.manager.id, timezone_str="UTC")
        assert result.success_count == 3
        assert result.error_count == 0
        assert [r.index for r in result.results] == [0, 1, 2]
        assert db.query(DisposalSchedule).count() == 3
        assert db.query(AuditLog).filter(AuditLog.source == "batch").count() == 3

    @pytest.mark.parametrize("bad_index", [0, 2, 4])
    def test_invalid_item_is_isolated(self, db, seed, bad_index):
        candidates = _candidates(seed, 5)
        candidates[bad_index] = {"waste_item_id": str(seed.acid_item.id)}

        result = import_batch(db, candidates, timezone_str="UTC")
        assert result.success_count == 4
        assert result.error_count == 1
        assert [e.index for e in result.error_details] == [bad_index]
        assert db.query(DisposalSchedule).count() == 4

    def test_mixed_failures(self, db, seed):
        candidates = [
            {"waste_item_id": str(seed.acid_item.id), "scheduled_date": "2025-02-01"},
            {"waste_item_id": str(uuid.uuid4()), "scheduled_date": "2025-02-02"},
            "not an object",
            {"waste_item_id": str(seed.water_item.id), "scheduled_date": "2025-02-03", "is_recurring": True},
            {"waste_item_id": str(seed.water_item.id), "scheduled_date": "2025-02-04",
             "assigned_to": str(seed.tech.id), "priority": "high"},
        ]
        result = import_batch(db, candidates, timezone_str="UTC")

        assert result.success_count == 2
        assert result.error_count == 3
        errors = {e.index: e.error for e in result.error_details}
        assert set(errors) == {1, 2, 3}
        assert "Waste item not found" in errors[1]
        assert [r.index for r in result.results] == [0, 4]

        persisted = {row.id for row in db.query(DisposalSchedule).all()}
        assert persisted == {r.id for r in result.results}

    def test_empty_batch_rejected(self, db, seed):
        with pytest.raises(ValidationError):
            import_batch(db, [])

    def test_unreachable_store(self, db, seed, monkeypatch):
        def refuse(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        monkeypatch.setattr(db, "execute", refuse)
        with pytest.raises(InfrastructureError):
            import_batch(db, _candidates(seed, 2))

    def test_bad_timestamps_are_item_errors(self, db, seed):
        candidates = [
            {"waste_item_id": str(seed.acid_item.id), "scheduled_date": "2025-02-01T09:00:00"},
            {"waste_item_id": str(seed.acid_item.id), "scheduled_date": "0001-01-01T00:00:00"},
            {"waste_item_id": str(seed.acid_item.id), "scheduled_date": "next tuesday"},
            {"waste_item_id": str(seed.acid_item.id), "scheduled_date": "2025-02-03",
             "is_recurring": True, "recurrence_pattern": "weekly", "recurrence_end_date": "someday"},
            {"waste_item_id": str(seed.water_item.id), "scheduled_date": "2025-02-04T09:00:00"},
        ]
        result = import_batch(db, candidates, timezone_str="Europe/Berlin")

        assert result.success_count == 2
        assert result.error_count == 3
        assert [e.index for e in result.error_details] == [1, 2, 3]
        assert "scheduled_date" in result.error_details[0].error
        assert "recurrence_end_date" in result.error_details[2].error
        assert db.query(DisposalSchedule).count() == 2
