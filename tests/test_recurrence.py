from datetime import datetime
from types import SimpleNamespace

import pytz

from disposal_hub.services.recurrence import next_occurrence, successor_fields


class TestNextOccurrence:
    def test_fixed_steps(self):
        start = datetime(2025, 1, 6, 9, 0)
        assert next_occurrence(start, "daily") == datetime(2025, 1, 7, 9, 0)
        assert next_occurrence(start, "weekly") == datetime(2025, 1, 13, 9, 0)
        assert next_occurrence(start, "biweekly") == datetime(2025, 1, 20, 9, 0)

    def test_calendar_steps(self):
        start = datetime(2025, 1, 15, 8, 30)
        assert next_occurrence(start, "monthly") == datetime(2025, 2, 15, 8, 30)
        assert next_occurrence(start, "quarterly") == datetime(2025, 4, 15, 8, 30)
        assert next_occurrence(start, "yearly") == datetime(2026, 1, 15, 8, 30)

    def test_month_end_clamps(self):
        assert next_occurrence(datetime(2025, 1, 31), "monthly") == datetime(2025, 2, 28)
        assert next_occurrence(datetime(2024, 1, 31), "monthly") == datetime(2024, 2, 29)
        assert next_occurrence(datetime(2025, 11, 30), "quarterly") == datetime(2026, 2, 28)
        assert next_occurrence(datetime(2024, 2, 29), "yearly") == datetime(2025, 2, 28)

    def test_unknown_pattern_returns_none(self):
        assert next_occurrence(datetime(2025, 1, 6), "fortnightly") is None
        assert next_occurrence(datetime(2025, 1, 6), None) is None

    def test_keeps_tzinfo(self):
        start = pytz.UTC.localize(datetime(2025, 1, 6, 9, 0))
        result = next_occurrence(start, "weekly")
        assert result.tzinfo is not None
        assert result == pytz.UTC.localize(datetime(2025, 1, 13, 9, 0))


class TestSuccessorFields:
    def test_copies_descriptive_fields(self):
        reminders = ["2025-01-05T09:00:00"]
        source = SimpleNamespace(
            waste_item_id="item",
            assigned_to="user",
            notes="bring gloves",
            reminder_dates=reminders,
            is_recurring=True,
            recurrence_pattern="weekly",
            recurrence_end_date=None,
            priority="high",
            disposal_method="pickup",
            quantity=2.5,
            unit="l",
            created_by="creator",
            status="completed",
        )
        fields = successor_fields(source)
        assert fields["waste_item_id"] == "item"
        assert fields["priority"] == "high"
        assert fields["recurrence_pattern"] == "weekly"
        assert "status" not in fields
        assert fields["reminder_dates"] == reminders
        assert fields["reminder_dates"] is not reminders
