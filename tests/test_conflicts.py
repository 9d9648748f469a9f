import pytest

from disposal_hub.services.disposal_conflict import check_conflicts
from disposal_hub.services.errors import ValidationError


def _add(store, item, when, **extra):
    return store.create({"waste_item_id": str(item.id), "scheduled_date": when, **extra})


class TestCheckConflicts:
    def test_threshold_is_inclusive(self, db, store, seed):
        for hour in range(8, 12):
            _add(store, seed.water_item, f"2025-01-06T{hour:02d}:00:00")

        report = check_conflicts(db, "2025-01-06", max_per_day=5, timezone_str="UTC")
        assert report.count == 4
        assert report.has_conflict is False

        _add(store, seed.water_item, "2025-01-06T15:00:00")
        report = check_conflicts(db, "2025-01-06", max_per_day=5, timezone_str="UTC")
        assert report.count == 5
        assert report.has_conflict is True
        assert report.max_per_day == 5
        assert len(report.details) == 5

    def test_terminal_entries_not_counted(self, db, store, seed):
        done = _add(store, seed.water_item, "2025-01-06T08:00:00")
        store.complete(done.id)
        _add(store, seed.water_item, "2025-01-06T09:00:00", status="cancelled")
        _add(store, seed.water_item, "2025-01-06T10:00:00")
        _add(store, seed.water_item, "2025-01-06T11:00:00", status="overdue")

        report = check_conflicts(db, "2025-01-06", max_per_day=2, timezone_str="UTC")
        assert report.count == 2
        assert report.has_conflict is True

    def test_critical_hazards_counted(self, db, store, seed):
        _add(store, seed.acid_item, "2025-01-06T08:00:00")
        _add(store, seed.acid_item, "2025-01-06T09:00:00")
        _add(store, seed.solvent_item, "2025-01-06T10:00:00")

        report = check_conflicts(db, "2025-01-06", timezone_str="UTC")
        assert report.count == 3
        assert report.critical_count == 2
        assert report.max_per_day == 5
        assert report.has_conflict is False
        assert {d["hazard_level"] for d in report.details} == {"critical", "high"}

    def test_day_window_follows_reference_timezone(self, db, store, seed):
        # 23:30 UTC on Jan 6 is already Jan 7 in Berlin
        _add(store, seed.water_item, "2025-01-06T23:30:00")

        assert check_conflicts(db, "2025-01-06", timezone_str="UTC").count == 1
        assert check_conflicts(db, "2025-01-06", timezone_str="Europe/Berlin").count == 0
        assert check_conflicts(db, "2025-01-07", timezone_str="Europe/Berlin").count == 1

    def test_other_days_ignored(self, db, store, seed):
        _add(store, seed.water_item, "2025-01-05T23:59:59")
        _add(store, seed.water_item, "2025-01-07T00:00:00")
        assert check_conflicts(db, "2025-01-06", timezone_str="UTC").count == 0

    def test_exclude_schedule(self, db, store, seed):
        row = _add(store, seed.water_item, "2025-01-06T08:00:00")
        _add(store, seed.water_item, "2025-01-06T09:00:00")
        report = check_conflicts(db, "2025-01-06", timezone_str="UTC", exclude_schedule_id=row.id)
        assert report.count == 1

    def test_invalid_arguments(self, db, seed):
        with pytest.raises(ValidationError):
            check_conflicts(db, "2025-01-06", max_per_day=0)
        with pytest.raises(ValidationError):
            check_conflicts(db, "not a date")
        with pytest.raises(ValidationError):
            check_conflicts(db, "0001-01-01", timezone_str="Europe/Berlin")
        with pytest.raises(ValidationError):
            check_conflicts(db, "2025-01-06", exclude_schedule_id="not-a-uuid")
