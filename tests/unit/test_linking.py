"""
Unit tests for linking responses to slots.

Covers resolution order, the one-response-per-slot rule, idempotent
resubmission, reassignment and retry of transient write failures.
"""

from datetime import date, datetime

import pytest

from checkins.core.lifecycle import (
    AlreadyCompleted,
    AmbiguousMatch,
    EnrollmentParams,
    InvalidInput,
    SeriesKey,
    SlotNotFound,
    SlotStatus,
    SubmissionPayload,
    WriteError,
)
from checkins.core.lifecycle.documents import get_response, get_slot
from checkins.core.lifecycle.store import RESPONSES


@pytest.fixture
def series(lifecycle):
    """A precreated four-week series for client-1/form-1."""
    lifecycle.create_series(
        EnrollmentParams(
            client_id="client-1",
            form_id="form-1",
            coach_id="coach-1",
            start_date=date(2026, 1, 1),
            first_check_in_date=date(2026, 1, 5),
        ),
        precreate=True,
    )
    return lifecycle.list_series(SeriesKey("client-1", "form-1"))


def assert_linked(store, slot_id, response_id):
    slot = get_slot(store, slot_id)
    response = get_response(store, response_id)
    assert slot.status == SlotStatus.COMPLETED
    assert slot.linked_response_id == response_id
    assert response.linked_slot_id == slot_id


class TestSubmit:
    """Tests for LinkResolver.submit via the lifecycle."""
    
    def test_submit_by_sequence_completes_slot(self, lifecycle, store, series):
        """The response and its slot point at each other after one submit."""
        result = lifecycle.submit_response(
            "client-1", "form-1", SubmissionPayload(score=8.5), sequence_number=2
        )
        
        assert result.slot.slot_id == series[1].slot_id
        assert result.slot.score == 8.5
        assert result.response.sequence_number == 2
        assert not result.already_linked
        assert_linked(store, series[1].slot_id, result.response.response_id)
    
    def test_submit_by_slot_id(self, lifecycle, store, series):
        result = lifecycle.submit_response(
            "client-1", "form-1", SubmissionPayload(score=5), slot_id=series[0].slot_id
        )
        assert_linked(store, series[0].slot_id, result.response.response_id)
    
    def test_second_submit_on_same_slot_fails(self, lifecycle, store, series):
        """A completed slot rejects a different response and keeps the first link."""
        slot_id = series[0].slot_id
        first = lifecycle.submit_response(
            "client-1", "form-1", SubmissionPayload(score=6), slot_id=slot_id
        )
        
        with pytest.raises(AlreadyCompleted) as excinfo:
            lifecycle.submit_response(
                "client-1", "form-1", SubmissionPayload(score=9), slot_id=slot_id
            )
        
        assert excinfo.value.linked_response_id == first.response.response_id
        assert_linked(store, slot_id, first.response.response_id)
        assert get_slot(store, slot_id).score == 6
        assert store.count(RESPONSES) == 1
    
    def test_resubmitting_same_response_id_is_idempotent(self, lifecycle, store, series):
        """A retried submission with the same id returns the existing link."""
        payload = SubmissionPayload(score=7, response_id="resp-fixed")
        lifecycle.submit_response("client-1", "form-1", payload, sequence_number=1)
        
        again = lifecycle.submit_response("client-1", "form-1", payload, sequence_number=1)
        
        assert again.already_linked
        assert again.slot.slot_id == series[0].slot_id
        assert store.count(RESPONSES) == 1
    
    def test_response_id_owned_by_another_client_is_rejected(self, lifecycle, store, series, seed_slot):
        """Reusing another client's response id fails and returns nothing of theirs."""
        seed_slot("c2-slot-1", client_id="client-2")
        lifecycle.submit_response(
            "client-1", "form-1", SubmissionPayload(score=9, response_id="resp-shared"), sequence_number=1
        )
        
        with pytest.raises(InvalidInput, match="already in use") as excinfo:
            lifecycle.submit_response(
                "client-2", "form-1", SubmissionPayload(score=3, response_id="resp-shared"), sequence_number=1
            )
        
        assert series[0].slot_id not in str(excinfo.value)
        assert get_slot(store, "c2-slot-1").status == SlotStatus.PENDING
        assert get_response(store, "resp-shared").client_id == "client-1"
        assert_linked(store, series[0].slot_id, "resp-shared")
    
    def test_unknown_sequence_raises_slot_not_found(self, lifecycle, series):
        with pytest.raises(SlotNotFound):
            lifecycle.submit_response("client-1", "form-1", SubmissionPayload(), sequence_number=9)
    
    def test_unknown_slot_id_raises_slot_not_found(self, lifecycle, series):
        with pytest.raises(SlotNotFound):
            lifecycle.submit_response("client-1", "form-1", SubmissionPayload(), slot_id="nope")
    
    def test_slot_from_another_series_is_not_used(self, lifecycle, series):
        """A slot id belonging to another client's series is not a match."""
        with pytest.raises(SlotNotFound):
            lifecycle.submit_response(
                "client-2", "form-1", SubmissionPayload(), slot_id=series[0].slot_id
            )
    
    def test_requires_slot_or_sequence(self, lifecycle):
        with pytest.raises(InvalidInput):
            lifecycle.submit_response("client-1", "form-1", SubmissionPayload())
    
    def test_ambiguous_pending_slots_are_not_guessed(self, lifecycle, seed_slot):
        """Two pending slots with the same sequence number: refuse to pick."""
        seed_slot("slot-a", sequence_number=2)
        seed_slot("slot-b", sequence_number=2)
        
        with pytest.raises(AmbiguousMatch) as excinfo:
            lifecycle.submit_response("client-1", "form-1", SubmissionPayload(), sequence_number=2)
        
        assert excinfo.value.candidate_ids == ["slot-a", "slot-b"]
    
    def test_completed_named_slot_falls_back_to_sequence(self, lifecycle, store, seed_linked, seed_slot):
        """A stale slot id with a sequence number finds the one open slot of that week."""
        seed_linked("slot-old", "resp-old", sequence_number=2)
        seed_slot("slot-new", sequence_number=2)
        
        result = lifecycle.submit_response(
            "client-1", "form-1", SubmissionPayload(), slot_id="slot-old", sequence_number=2
        )
        
        assert result.slot.slot_id == "slot-new"
        assert_linked(store, "slot-old", "resp-old")
    
    def test_legacy_slot_id_resolves(self, lifecycle, store, seed_slot):
        """References to pre-migration ids still find the slot."""
        seed_slot("slot-1", legacy_id="assignment-17")
        
        result = lifecycle.submit_response(
            "client-1", "form-1", SubmissionPayload(), slot_id="assignment-17"
        )
        
        assert result.slot.slot_id == "slot-1"
        assert_linked(store, "slot-1", result.response.response_id)
    
    def test_submitted_at_is_recorded_as_completion_time(self, lifecycle, store, series):
        submitted = datetime(2026, 1, 5, 8, 15)
        result = lifecycle.submit_response(
            "client-1", "form-1", SubmissionPayload(submitted_at=submitted), sequence_number=1
        )
        assert result.slot.completed_at == submitted


class TestWriteRetry:
    """Transient write failures are retried; exhausted retries surface."""
    
    def test_transient_failure_is_retried(self, lifecycle, store, series):
        store.fail_next_writes = 1
        
        result = lifecycle.submit_response("client-1", "form-1", SubmissionPayload(), sequence_number=1)
        
        assert_linked(store, series[0].slot_id, result.response.response_id)
    
    def test_persistent_failure_raises_write_error(self, lifecycle, store, series):
        store.fail_next_writes = 5
        
        with pytest.raises(WriteError):
            lifecycle.submit_response("client-1", "form-1", SubmissionPayload(), sequence_number=1)
        
        assert get_slot(store, series[0].slot_id).status == SlotStatus.PENDING
        assert store.count(RESPONSES) == 0


class TestReassign:
    """Moving a response recorded against the wrong week."""
    
    def test_reassign_moves_link_atomically(self, lifecycle, store, series):
        """Target completed, source reopened, response re-pointed."""
        first = lifecycle.submit_response("client-1", "form-1", SubmissionPayload(score=4), sequence_number=1)
        response_id = first.response.response_id
        
        result = lifecycle.reassign_response("client-1", response_id, 2)
        
        assert result.slot.slot_id == series[1].slot_id
        assert_linked(store, series[1].slot_id, response_id)
        source = get_slot(store, series[0].slot_id)
        assert source.status == SlotStatus.PENDING
        assert source.linked_response_id is None
        assert source.score is None
        assert get_response(store, response_id).sequence_number == 2
    
    def test_reassign_to_same_week_is_rejected(self, lifecycle, series):
        first = lifecycle.submit_response("client-1", "form-1", SubmissionPayload(), sequence_number=1)
        with pytest.raises(InvalidInput):
            lifecycle.reassign_response("client-1", first.response.response_id, 1)
    
    def test_reassign_onto_completed_slot_fails(self, lifecycle, store, series):
        first = lifecycle.submit_response("client-1", "form-1", SubmissionPayload(), sequence_number=1)
        second = lifecycle.submit_response("client-1", "form-1", SubmissionPayload(), sequence_number=2)
        
        with pytest.raises(AlreadyCompleted):
            lifecycle.reassign_response("client-1", first.response.response_id, 2)
        
        assert_linked(store, series[0].slot_id, first.response.response_id)
        assert_linked(store, series[1].slot_id, second.response.response_id)
