"""
Schedule generation for recurring check-ins.

Turns enrollment inputs into the anchor slot of a series and derives any
later slot from that anchor. Pure computation: persistence belongs to
the lifecycle service.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from .errors import InvalidInput
from .models import EnrollmentParams, Frequency, LifecycleConfig, Slot, SlotStatus, parse_due_time


logger = logging.getLogger(__name__)

FIRST_CHECK_IN_DELAY = timedelta(days=7)


def new_id() -> str:
    return str(uuid4())


class ScheduleGenerator:
    """
    Computes due dates and windows for slots in a series.
    
    The default due time and check-in window come from the injected
    LifecycleConfig, never from module state, so tests can vary them.
    """
    
    def __init__(
        self,
        config: LifecycleConfig,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._config = config
        self._today = today
    
    def first_slot(self, params: EnrollmentParams, slot_id: Optional[str] = None) -> Slot:
        """
        Build slot 1 for a new series.
        
        start_date defaults to today, first_check_in_date to a week after
        the start, due time to the configured default.
        """
        self._validate_identity(params)
        if params.duration <= 0:
            raise InvalidInput(f"Duration must be positive, got {params.duration}")
        
        frequency = Frequency.parse(params.frequency)
        if frequency == Frequency.ONCE and params.duration != 1:
            raise InvalidInput("A one-off check-in must have a duration of 1")
        
        due_time = parse_due_time(params.due_time) if params.due_time else self._config.due_time
        start_date = params.start_date or self._today()
        first_date = params.first_check_in_date or start_date + FIRST_CHECK_IN_DELAY
        if first_date < start_date:
            raise InvalidInput("First check-in date cannot be before the start date")
        
        due_at = datetime.combine(first_date, due_time)
        window = params.check_in_window or self._config.check_in_window
        window_start, window_end = window.bounds_for(due_at)
        
        slot = Slot(
            slot_id=slot_id or new_id(),
            client_id=params.client_id,
            form_id=params.form_id,
            coach_id=params.coach_id,
            sequence_number=1,
            total_slots_planned=params.duration,
            due_at=due_at,
            frequency=frequency,
            start_date=start_date,
            check_in_window_start=window_start,
            check_in_window_end=window_end,
            status=SlotStatus.PENDING,
        )
        
        logger.debug(
            "Generated anchor slot",
            extra={
                "series": str(slot.series_key),
                "due_at": due_at.isoformat(),
                "total_slots": params.duration,
            }
        )
        return slot
    
    def slot_for(self, anchor: Slot, sequence_number: int, slot_id: Optional[str] = None) -> Slot:
        """
        Derive slot N from the anchor: due_at(N) = due_at(1) + (N - 1) * period.
        
        The window keeps the same offset from the due date as the anchor's.
        """
        if not anchor.is_anchor:
            raise InvalidInput("Later slots are derived from slot 1 only")
        if sequence_number < 1 or sequence_number > anchor.total_slots_planned:
            raise InvalidInput(
                f"Sequence {sequence_number} outside 1..{anchor.total_slots_planned}"
            )
        if sequence_number == 1:
            return anchor
        
        period = anchor.frequency.period
        if period is None:
            raise InvalidInput("A one-off series has no later slots")
        
        shift = period * (sequence_number - 1)
        return Slot(
            slot_id=slot_id or new_id(),
            client_id=anchor.client_id,
            form_id=anchor.form_id,
            coach_id=anchor.coach_id,
            sequence_number=sequence_number,
            total_slots_planned=anchor.total_slots_planned,
            due_at=anchor.due_at + shift,
            frequency=anchor.frequency,
            start_date=anchor.start_date,
            check_in_window_start=_shift(anchor.check_in_window_start, shift),
            check_in_window_end=_shift(anchor.check_in_window_end, shift),
            status=SlotStatus.PENDING,
        )
    
    def generate_series(self, params: EnrollmentParams) -> list[Slot]:
        """Every planned slot of a series, anchor first."""
        anchor = self.first_slot(params)
        return [anchor] + [
            self.slot_for(anchor, n) for n in range(2, anchor.total_slots_planned + 1)
        ]
    
    @staticmethod
    def _validate_identity(params: EnrollmentParams) -> None:
        missing = [
            name for name in ("client_id", "form_id", "coach_id")
            if not getattr(params, name)
        ]
        if missing:
            raise InvalidInput(f"Missing required fields: {', '.join(missing)}")


def _shift(value: Optional[datetime], delta: timedelta) -> Optional[datetime]:
    return value + delta if value is not None else None
