"""
Linking submitted responses to slots.

A submission either names its slot directly or is matched by
(client, form, sequence number). The response document and the slot's
completion are written in a single atomic write, so readers never see a
response without its slot completed or the other way round.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .documents import (
    PENDING_FIELDS,
    completion_fields,
    get_response,
    get_slot,
    response_fields,
    slot_from_document,
)
from .errors import (
    AlreadyCompleted,
    AmbiguousMatch,
    InvalidInput,
    ResponseNotFound,
    SlotNotFound,
    WriteConflict,
)
from .models import LinkResult, Response, SeriesKey, Slot
from .schedule import new_id
from .store import (
    DocumentStore,
    FieldFilter,
    RESPONSES,
    SLOTS,
    WriteOp,
    series_filters,
    with_write_retry,
)


logger = logging.getLogger(__name__)


@dataclass
class SubmissionPayload:
    """
    What the client submitted.
    
    A caller-supplied response_id makes the submission idempotent: sending
    the same id twice returns the existing link instead of failing.
    """
    score: Optional[float] = None
    submitted_at: Optional[datetime] = None
    response_id: Optional[str] = None


class LinkResolver:
    """Attaches responses to slots, one atomic write per submission."""
    
    def __init__(self, store: DocumentStore, retry_attempts: int = 3) -> None:
        self._store = store
        self._retry_attempts = retry_attempts
    
    def submit(
        self,
        client_id: str,
        form_id: str,
        payload: SubmissionPayload,
        slot_id: Optional[str] = None,
        sequence_number: Optional[int] = None,
    ) -> LinkResult:
        """
        Create the response and complete its slot.
        
        Resolution order: a named slot that is still pending, otherwise the
        unique slot with the given sequence number. Raises SlotNotFound,
        AlreadyCompleted or AmbiguousMatch rather than guessing.
        """
        if slot_id is None and sequence_number is None:
            raise InvalidInput("Either slot_id or sequence_number is required")
        if sequence_number is not None and sequence_number < 1:
            raise InvalidInput(f"Sequence number must be positive, got {sequence_number}")
        
        key = SeriesKey(client_id, form_id)
        
        if payload.response_id:
            previous = self._existing_link(key, payload.response_id)
            if previous is not None:
                return previous
        
        slot = self._find_candidate(key, slot_id, sequence_number)
        response_id = payload.response_id or new_id()
        
        if not slot.is_open:
            raise AlreadyCompleted(slot.slot_id, slot.linked_response_id)
        
        response = Response(
            response_id=response_id,
            client_id=client_id,
            form_id=form_id,
            coach_id=slot.coach_id,
            submitted_at=payload.submitted_at or datetime.now(timezone.utc).replace(tzinfo=None),
            linked_slot_id=slot.slot_id,
            sequence_number=slot.sequence_number,
            score=payload.score,
        )
        
        ops = [
            WriteOp(
                RESPONSES,
                response_id,
                response_fields(response),
                merge=False,
                precondition={"clientId": None},
            ),
            WriteOp(
                SLOTS,
                slot.slot_id,
                completion_fields(response),
                precondition={"linkedResponseId": None},
            ),
        ]
        
        try:
            with_write_retry(lambda: self._store.atomic_write(ops), self._retry_attempts)
        except WriteConflict:
            # Someone else completed the slot (or a retried write landed)
            current = get_slot(self._store, slot.slot_id)
            if current is not None and current.linked_response_id == response_id:
                return LinkResult(slot=current, response=response, already_linked=True)
            raise AlreadyCompleted(
                slot.slot_id, current.linked_response_id if current else None
            )
        
        linked = get_slot(self._store, slot.slot_id) or slot
        logger.info(
            "Linked response to slot",
            extra={
                "series": str(key),
                "slot_id": slot.slot_id,
                "response_id": response_id,
                "sequence_number": slot.sequence_number,
            }
        )
        return LinkResult(slot=linked, response=response)
    
    def reassign(self, client_id: str, response_id: str, target_sequence: int) -> LinkResult:
        """
        Move a linked response to the pending slot with target_sequence.
        
        For responses recorded against the wrong week. The response, the
        target slot and the former slot change in one atomic write.
        """
        if target_sequence < 1:
            raise InvalidInput(f"Sequence number must be positive, got {target_sequence}")
        
        response = get_response(self._store, response_id)
        if response is None:
            raise ResponseNotFound(f"Response {response_id} not found")
        if response.client_id != client_id:
            raise InvalidInput(f"Response {response_id} does not belong to client {client_id}")
        
        source = get_slot(self._store, response.linked_slot_id)
        if source is None:
            raise SlotNotFound(f"Response {response_id} is not linked to an existing slot")
        if source.linked_response_id != response.response_id:
            raise InvalidInput(f"Slot {source.slot_id} does not hold response {response_id}")
        
        target = self._find_candidate(response.series_key, None, target_sequence)
        if target.slot_id == source.slot_id:
            raise InvalidInput(f"Response {response_id} is already on sequence {target_sequence}")
        if not target.is_open:
            raise AlreadyCompleted(target.slot_id, target.linked_response_id)
        
        moved = Response(
            response_id=response.response_id,
            client_id=response.client_id,
            form_id=response.form_id,
            coach_id=response.coach_id,
            submitted_at=response.submitted_at,
            linked_slot_id=target.slot_id,
            sequence_number=target.sequence_number,
            score=response.score,
        )
        
        ops = [
            WriteOp(
                RESPONSES,
                response.response_id,
                {"linkedSlotId": target.slot_id, "sequenceNumber": target.sequence_number},
                precondition={"linkedSlotId": response.linked_slot_id},
            ),
            WriteOp(
                SLOTS,
                target.slot_id,
                completion_fields(moved),
                precondition={"linkedResponseId": None},
            ),
            WriteOp(
                SLOTS,
                source.slot_id,
                dict(PENDING_FIELDS),
                precondition={"linkedResponseId": response.response_id},
            ),
        ]
        
        try:
            with_write_retry(lambda: self._store.atomic_write(ops), self._retry_attempts)
        except WriteConflict:
            current = get_slot(self._store, target.slot_id)
            raise AlreadyCompleted(target.slot_id, current.linked_response_id if current else None)
        
        logger.info(
            "Reassigned response",
            extra={
                "response_id": response_id,
                "from_slot": source.slot_id,
                "from_sequence": source.sequence_number,
                "to_slot": target.slot_id,
                "to_sequence": target_sequence,
            }
        )
        return LinkResult(slot=get_slot(self._store, target.slot_id) or target, response=moved)
    
    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------
    
    def _existing_link(self, key: SeriesKey, response_id: str) -> Optional[LinkResult]:
        response = get_response(self._store, response_id)
        if response is None:
            return None
        if response.series_key != key:
            # Another series owns this id; say nothing about its link
            raise InvalidInput(f"Response id {response_id} is already in use")
        
        slot = get_slot(self._store, response.linked_slot_id)
        if slot is not None and slot.linked_response_id == response.response_id:
            return LinkResult(slot=slot, response=response, already_linked=True)
        raise InvalidInput(
            f"Response {response_id} already exists without a consistent link; run an audit"
        )
    
    def _find_candidate(
        self,
        key: SeriesKey,
        slot_id: Optional[str],
        sequence_number: Optional[int],
    ) -> Slot:
        if slot_id is not None:
            slot = get_slot(self._store, slot_id)
            if slot is not None:
                if slot.series_key != key:
                    raise SlotNotFound(f"Slot {slot_id} does not belong to series {key}")
                if slot.is_open or sequence_number is None:
                    return slot
            elif sequence_number is None:
                raise SlotNotFound(f"Slot {slot_id} not found")
        
        filters = series_filters(key.client_id, key.form_id)
        filters.append(FieldFilter("sequenceNumber", sequence_number))
        candidates = sorted(
            (slot_from_document(d) for d in self._store.query(SLOTS, filters)),
            key=lambda s: s.slot_id,
        )
        if not candidates:
            raise SlotNotFound(f"No slot with sequence {sequence_number} in series {key}")
        
        open_slots = [s for s in candidates if s.is_open]
        if len(open_slots) > 1:
            raise AmbiguousMatch(
                f"{len(open_slots)} pending slots share sequence {sequence_number} in series {key}",
                [s.slot_id for s in open_slots],
            )
        if open_slots:
            return open_slots[0]
        return candidates[0]
