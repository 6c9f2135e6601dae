"""
Shared fixtures for the lifecycle tests.

Everything runs against the in-memory document store. Seed helpers write
raw documents so tests can set up the broken states that migrations leave
behind, which the lifecycle itself would never produce.
"""

from datetime import date, datetime, timedelta
from typing import Optional

import pytest

from checkins.core.lifecycle import CheckInLifecycle, LifecycleConfig, ScheduleGenerator
from checkins.core.lifecycle.store import RESPONSES, SLOTS
from checkins.infrastructure.documents import InMemoryDocumentStore


TODAY = date(2026, 1, 1)
FIRST_DUE = datetime(2026, 1, 5, 9, 0)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def config() -> LifecycleConfig:
    return LifecycleConfig()


@pytest.fixture
def generator(config) -> ScheduleGenerator:
    return ScheduleGenerator(config, today=lambda: TODAY)


@pytest.fixture
def lifecycle(store, config, generator) -> CheckInLifecycle:
    return CheckInLifecycle(store, config, generator)


@pytest.fixture
def seed_slot(store):
    """Write a slot document directly, bypassing the lifecycle."""
    
    def _seed(
        slot_id: str,
        sequence_number: int = 1,
        client_id: str = "client-1",
        form_id: str = "form-1",
        due_at: Optional[datetime] = None,
        status: str = "pending",
        linked_response_id: Optional[str] = None,
        total_slots_planned: int = 4,
        legacy_id: Optional[str] = None,
        score: Optional[float] = None,
    ) -> None:
        due = due_at or FIRST_DUE + timedelta(days=7 * (sequence_number - 1))
        fields = {
            "clientId": client_id,
            "formId": form_id,
            "coachId": "coach-1",
            "sequenceNumber": sequence_number,
            "totalSlotsPlanned": total_slots_planned,
            "frequency": "weekly",
            "startDate": TODAY.isoformat(),
            "dueAt": due.isoformat(),
            "checkInWindowStart": None,
            "checkInWindowEnd": None,
            "status": status,
            "linkedResponseId": linked_response_id,
            "completedAt": due.isoformat() if status == "completed" else None,
            "score": score,
        }
        if legacy_id:
            fields["legacyId"] = legacy_id
        store.put(SLOTS, slot_id, fields)
    
    return _seed


@pytest.fixture
def seed_response(store):
    """Write a response document directly, bypassing the lifecycle."""
    
    def _seed(
        response_id: str,
        linked_slot_id: Optional[str],
        sequence_number: Optional[int] = 1,
        client_id: str = "client-1",
        form_id: str = "form-1",
        score: Optional[float] = 7.0,
    ) -> None:
        store.put(RESPONSES, response_id, {
            "clientId": client_id,
            "formId": form_id,
            "coachId": "coach-1",
            "linkedSlotId": linked_slot_id,
            "sequenceNumber": sequence_number,
            "submittedAt": datetime(2026, 1, 5, 8, 30).isoformat(),
            "score": score,
        })
    
    return _seed


@pytest.fixture
def seed_linked(seed_slot, seed_response):
    """A consistent completed slot and its response."""
    
    def _seed(slot_id: str, response_id: str, sequence_number: int = 1, **kwargs) -> None:
        seed_slot(
            slot_id,
            sequence_number=sequence_number,
            status="completed",
            linked_response_id=response_id,
            **kwargs,
        )
        seed_response(response_id, slot_id, sequence_number=sequence_number, **{
            k: v for k, v in kwargs.items() if k in ("client_id", "form_id")
        })
    
    return _seed
