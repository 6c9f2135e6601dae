"""
Translation between domain models and stored documents.

Field names follow the document collections' camelCase convention.
Datetimes are stored as ISO-8601 strings so they sort lexically and
survive JSON round trips in every backend.
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

from .models import Frequency, Response, SeriesKey, Slot, SlotStatus
from .store import (
    Document,
    DocumentStore,
    LEGACY_ID_FIELD,
    RESPONSES,
    SLOTS,
    query_sorted,
    resolve_reference,
    series_filters,
)


logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value)


def slot_fields(slot: Slot) -> dict[str, Any]:
    fields = {
        "clientId": slot.client_id,
        "formId": slot.form_id,
        "coachId": slot.coach_id,
        "sequenceNumber": slot.sequence_number,
        "totalSlotsPlanned": slot.total_slots_planned,
        "frequency": slot.frequency.value,
        "startDate": slot.start_date.isoformat() if slot.start_date else None,
        "dueAt": _iso(slot.due_at),
        "checkInWindowStart": _iso(slot.check_in_window_start),
        "checkInWindowEnd": _iso(slot.check_in_window_end),
        "status": slot.status.value,
        "linkedResponseId": slot.linked_response_id,
        "completedAt": _iso(slot.completed_at),
        "score": slot.score,
    }
    if slot.legacy_id:
        fields[LEGACY_ID_FIELD] = slot.legacy_id
    return fields


def slot_from_document(document: Document) -> Slot:
    data = document.fields
    try:
        status = SlotStatus(data.get("status") or SlotStatus.PENDING.value)
    except ValueError:
        # Legacy statuses such as "active" or "overdue" are not completions
        logger.debug(
            "Treating unknown slot status as pending",
            extra={"slot_id": document.id, "status": data.get("status")}
        )
        status = SlotStatus.PENDING
    
    return Slot(
        slot_id=document.id,
        client_id=data["clientId"],
        form_id=data["formId"],
        coach_id=data.get("coachId") or "",
        sequence_number=int(data.get("sequenceNumber") or 1),
        total_slots_planned=int(data.get("totalSlotsPlanned") or 1),
        frequency=Frequency(data.get("frequency") or Frequency.WEEKLY.value),
        start_date=_parse_date(data.get("startDate")),
        due_at=_parse_datetime(data["dueAt"]),
        check_in_window_start=_parse_datetime(data.get("checkInWindowStart")),
        check_in_window_end=_parse_datetime(data.get("checkInWindowEnd")),
        status=status,
        linked_response_id=data.get("linkedResponseId"),
        completed_at=_parse_datetime(data.get("completedAt")),
        score=data.get("score"),
        legacy_id=data.get(LEGACY_ID_FIELD),
    )


def response_fields(response: Response) -> dict[str, Any]:
    return {
        "clientId": response.client_id,
        "formId": response.form_id,
        "coachId": response.coach_id,
        "linkedSlotId": response.linked_slot_id,
        "sequenceNumber": response.sequence_number,
        "submittedAt": _iso(response.submitted_at),
        "score": response.score,
    }


def response_from_document(document: Document) -> Response:
    data = document.fields
    sequence = data.get("sequenceNumber")
    return Response(
        response_id=document.id,
        client_id=data["clientId"],
        form_id=data["formId"],
        coach_id=data.get("coachId") or "",
        submitted_at=_parse_datetime(data["submittedAt"]),
        linked_slot_id=data.get("linkedSlotId"),
        sequence_number=int(sequence) if sequence is not None else None,
        score=data.get("score"),
    )


def completion_fields(response: Response) -> dict[str, Any]:
    """Slot fields written when a response completes it."""
    return {
        "status": SlotStatus.COMPLETED.value,
        "linkedResponseId": response.response_id,
        "completedAt": _iso(response.submitted_at),
        "score": response.score,
    }


PENDING_FIELDS: dict[str, Any] = {
    "status": SlotStatus.PENDING.value,
    "linkedResponseId": None,
    "completedAt": None,
    "score": None,
}


def link_state(slot: Optional[Slot] = None, response: Optional[Response] = None) -> dict[str, Any]:
    """Snapshot of the link fields, used for before/after records in the repair log."""
    state: dict[str, Any] = {}
    if slot is not None:
        state["slot"] = {
            "id": slot.slot_id,
            "status": slot.status.value,
            "linkedResponseId": slot.linked_response_id,
            "completedAt": _iso(slot.completed_at),
            "score": slot.score,
        }
    if response is not None:
        state["response"] = {
            "id": response.response_id,
            "linkedSlotId": response.linked_slot_id,
            "sequenceNumber": response.sequence_number,
        }
    return state


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------

def load_series(store: DocumentStore, key: SeriesKey) -> list[Slot]:
    """Slots of one series in sequence order."""
    documents = query_sorted(
        store, SLOTS, series_filters(key.client_id, key.form_id), order_by="sequenceNumber"
    )
    return [slot_from_document(d) for d in documents]


def load_slots(store: DocumentStore, client_id: Optional[str] = None) -> list[Slot]:
    """Every slot of one client, or of the whole system when client_id is None."""
    filters = series_filters(client_id) if client_id is not None else []
    return [slot_from_document(d) for d in store.query(SLOTS, filters)]


def load_responses(store: DocumentStore, client_id: Optional[str] = None) -> list[Response]:
    filters = series_filters(client_id) if client_id is not None else []
    return [response_from_document(d) for d in store.query(RESPONSES, filters)]


def get_slot(store: DocumentStore, slot_ref: Optional[str]) -> Optional[Slot]:
    document = resolve_reference(store, SLOTS, slot_ref)
    return slot_from_document(document) if document is not None else None


def get_response(store: DocumentStore, response_id: Optional[str]) -> Optional[Response]:
    document = resolve_reference(store, RESPONSES, response_id)
    return response_from_document(document) if document is not None else None
