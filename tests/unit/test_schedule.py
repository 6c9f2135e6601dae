"""
Unit tests for schedule generation.

The generator tests are pure computation with no store involved. The
generator gets a fixed "today" so default dates are deterministic. The
last group persists series through the lifecycle.
"""

from datetime import date, datetime, time, timedelta

import pytest

from checkins.core.lifecycle import (
    CheckInLifecycle,
    CheckInWindow,
    EnrollmentParams,
    Frequency,
    InvalidInput,
    LifecycleConfig,
    ScheduleGenerator,
    SeriesKey,
    SlotNotFound,
    SlotStatus,
)
from checkins.core.lifecycle.store import SLOTS
from checkins.infrastructure.documents import InMemoryDocumentStore


def params(**overrides) -> EnrollmentParams:
    values = {
        "client_id": "client-1",
        "form_id": "form-1",
        "coach_id": "coach-1",
        "start_date": date(2026, 1, 1),
        "first_check_in_date": date(2026, 1, 5),
    }
    values.update(overrides)
    return EnrollmentParams(**values)


# ---------------------------------------------------------------------------
# Anchor slot
# ---------------------------------------------------------------------------

class TestFirstSlot:
    """Tests for slot 1 of a new series."""
    
    def test_anchor_uses_configured_due_time(self, generator):
        """Slot 1 is due on the first check-in date at the default due time."""
        slot = generator.first_slot(params())
        
        assert slot.sequence_number == 1
        assert slot.due_at == datetime(2026, 1, 5, 9, 0)
        assert slot.status == SlotStatus.PENDING
        assert slot.linked_response_id is None
        assert slot.total_slots_planned == 4
    
    def test_defaults_start_today_and_first_check_in_a_week_later(self, generator):
        """With no dates given, the series starts today and slot 1 is a week out."""
        slot = generator.first_slot(params(start_date=None, first_check_in_date=None))
        
        assert slot.start_date == date(2026, 1, 1)
        assert slot.due_at == datetime(2026, 1, 8, 9, 0)
    
    def test_explicit_due_time_overrides_default(self, generator):
        """A per-series due time wins over the configured one."""
        slot = generator.first_slot(params(due_time="07:30"))
        assert slot.due_at.time() == time(7, 30)
    
    def test_injected_config_changes_default_due_time(self):
        """The default comes from the injected config, not a module constant."""
        generator = ScheduleGenerator(LifecycleConfig(due_time=time(18, 0)))
        slot = generator.first_slot(params())
        assert slot.due_at == datetime(2026, 1, 5, 18, 0)
    
    def test_default_window_runs_friday_to_monday(self, generator):
        """A Monday due date opens the previous Friday 10:00 and closes Monday 22:00."""
        slot = generator.first_slot(params())
        
        assert slot.check_in_window_start == datetime(2026, 1, 2, 10, 0)
        assert slot.check_in_window_end == datetime(2026, 1, 5, 22, 0)
    
    def test_disabled_window_leaves_slot_always_open(self, generator):
        """A disabled window produces no bounds at all."""
        slot = generator.first_slot(params(check_in_window=CheckInWindow(enabled=False)))
        
        assert slot.check_in_window_start is None
        assert slot.check_in_window_end is None
    
    def test_unknown_window_day_is_rejected(self):
        """Window days must be weekday names."""
        with pytest.raises(InvalidInput, match="weekday"):
            CheckInWindow(start_day="someday")


class TestScheduleValidation:
    """Malformed inputs are rejected before anything is built."""
    
    @pytest.mark.parametrize("duration", [0, -3])
    def test_rejects_non_positive_duration(self, generator, duration):
        with pytest.raises(InvalidInput, match="Duration"):
            generator.first_slot(params(duration=duration))
    
    def test_rejects_unknown_frequency(self, generator):
        with pytest.raises(InvalidInput, match="frequency"):
            generator.first_slot(params(frequency="monthly"))
    
    def test_once_requires_duration_of_one(self, generator):
        """A one-off check-in cannot plan several slots."""
        with pytest.raises(InvalidInput, match="one-off"):
            generator.first_slot(params(frequency="once", duration=3))
    
    @pytest.mark.parametrize("value", ["9am", "25:00", "09:61", ""])
    def test_rejects_malformed_due_time(self, generator, value):
        with pytest.raises(InvalidInput):
            generator.first_slot(params(due_time=value or " "))
    
    def test_rejects_first_check_in_before_start(self, generator):
        with pytest.raises(InvalidInput, match="before the start"):
            generator.first_slot(params(first_check_in_date=date(2025, 12, 31)))
    
    def test_rejects_missing_identity(self, generator):
        with pytest.raises(InvalidInput, match="coach_id"):
            generator.first_slot(params(coach_id=""))


# ---------------------------------------------------------------------------
# Later slots
# ---------------------------------------------------------------------------

class TestSeriesGeneration:
    """Later slots are derived from slot 1 and the period."""
    
    @pytest.mark.parametrize("frequency, period_days", [
        ("daily", 1),
        ("weekly", 7),
        ("fortnightly", 14),
    ])
    def test_due_dates_follow_period(self, generator, frequency, period_days):
        """due_at(N) - due_at(1) == (N - 1) * period for every N."""
        slots = generator.generate_series(params(frequency=frequency, duration=5))
        
        assert [s.sequence_number for s in slots] == [1, 2, 3, 4, 5]
        for slot in slots:
            expected = slots[0].due_at + timedelta(days=period_days * (slot.sequence_number - 1))
            assert slot.due_at == expected
    
    def test_windows_shift_with_due_date(self, generator):
        """Each slot's window keeps the anchor's offset from its due date."""
        slots = generator.generate_series(params())
        
        assert slots[1].check_in_window_start == datetime(2026, 1, 9, 10, 0)
        assert slots[1].check_in_window_end == datetime(2026, 1, 12, 22, 0)
    
    def test_once_produces_single_slot(self, generator):
        slots = generator.generate_series(params(frequency="once", duration=1))
        
        assert len(slots) == 1
        assert slots[0].frequency == Frequency.ONCE
    
    def test_slot_for_rejects_sequence_past_duration(self, generator):
        anchor = generator.first_slot(params(duration=2))
        with pytest.raises(InvalidInput, match="outside"):
            generator.slot_for(anchor, 3)
    
    def test_slot_ids_are_unique(self, generator):
        slots = generator.generate_series(params(duration=6))
        assert len({s.slot_id for s in slots}) == 6


# ---------------------------------------------------------------------------
# Persisted series
# ---------------------------------------------------------------------------

class TestSeriesLifecycle:
    """Creating, listing and advancing a stored series."""
    
    def test_create_writes_only_the_anchor(self, lifecycle, store):
        """Without precreate only slot 1 exists; later slots come from advance."""
        anchor = lifecycle.create_series(params())
        
        assert anchor.sequence_number == 1
        assert anchor.due_at == datetime(2026, 1, 5, 9, 0)
        assert store.count(SLOTS) == 1
    
    def test_precreate_writes_every_planned_slot(self, lifecycle):
        lifecycle.create_series(params(duration=6), precreate=True)
        
        slots = lifecycle.list_series(SeriesKey("client-1", "form-1"))
        assert [s.sequence_number for s in slots] == [1, 2, 3, 4, 5, 6]
        assert all(s.status == SlotStatus.PENDING for s in slots)
    
    def test_precreate_is_chunked_to_the_store_limit(self, config, generator):
        """Five slots against a two-op batch limit take three writes."""
        small_store = InMemoryDocumentStore(max_batch_size=2)
        lifecycle = CheckInLifecycle(small_store, config, generator)
        
        lifecycle.create_series(params(duration=5), precreate=True)
        
        assert small_store.count(SLOTS) == 5
        assert small_store.write_calls == 3
    
    def test_second_enrollment_is_rejected(self, lifecycle, store):
        lifecycle.create_series(params())
        
        with pytest.raises(InvalidInput, match="already exists"):
            lifecycle.create_series(params())
        assert store.count(SLOTS) == 1
    
    def test_invalid_params_write_nothing(self, lifecycle, store):
        with pytest.raises(InvalidInput):
            lifecycle.create_series(params(duration=0), precreate=True)
        assert store.count(SLOTS) == 0
    
    def test_advance_adds_next_sequence(self, lifecycle):
        """Slot 2 lands one period after the anchor."""
        lifecycle.create_series(params())
        
        slot = lifecycle.advance_series(SeriesKey("client-1", "form-1"))
        
        assert slot.sequence_number == 2
        assert slot.due_at == datetime(2026, 1, 12, 9, 0)
    
    def test_advance_stops_at_planned_total(self, lifecycle):
        lifecycle.create_series(params(duration=2), precreate=True)
        
        with pytest.raises(InvalidInput, match="planned slots"):
            lifecycle.advance_series(SeriesKey("client-1", "form-1"))
    
    def test_advance_without_anchor_fails(self, lifecycle, seed_slot):
        seed_slot("slot-2", sequence_number=2)
        
        with pytest.raises(SlotNotFound):
            lifecycle.advance_series(SeriesKey("client-1", "form-1"))
    
    def test_list_unknown_series_is_empty(self, lifecycle):
        assert lifecycle.list_series(SeriesKey("nobody", "form-1")) == []
