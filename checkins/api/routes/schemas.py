"""
Response models shared by the lifecycle routes.

Translates domain dataclasses into the JSON shapes the API returns.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from ...core.lifecycle.models import LinkResult, Response, Slot


class SlotResponse(BaseModel):
    """One scheduled check-in."""
    slot_id: str
    client_id: str
    form_id: str
    coach_id: str
    sequence_number: int
    total_slots_planned: int
    frequency: str
    start_date: Optional[date] = None
    due_at: datetime
    check_in_window_start: Optional[datetime] = None
    check_in_window_end: Optional[datetime] = None
    status: str
    linked_response_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    score: Optional[float] = None
    
    @classmethod
    def from_slot(cls, slot: Slot) -> "SlotResponse":
        return cls(
            slot_id=slot.slot_id,
            client_id=slot.client_id,
            form_id=slot.form_id,
            coach_id=slot.coach_id,
            sequence_number=slot.sequence_number,
            total_slots_planned=slot.total_slots_planned,
            frequency=slot.frequency.value,
            start_date=slot.start_date,
            due_at=slot.due_at,
            check_in_window_start=slot.check_in_window_start,
            check_in_window_end=slot.check_in_window_end,
            status=slot.status.value,
            linked_response_id=slot.linked_response_id,
            completed_at=slot.completed_at,
            score=slot.score,
        )


class CheckInResponse(BaseModel):
    """A submitted response."""
    response_id: str
    client_id: str
    form_id: str
    linked_slot_id: Optional[str] = None
    sequence_number: Optional[int] = None
    submitted_at: datetime
    score: Optional[float] = None
    
    @classmethod
    def from_response(cls, response: Response) -> "CheckInResponse":
        return cls(
            response_id=response.response_id,
            client_id=response.client_id,
            form_id=response.form_id,
            linked_slot_id=response.linked_slot_id,
            sequence_number=response.sequence_number,
            submitted_at=response.submitted_at,
            score=response.score,
        )


class LinkResultResponse(BaseModel):
    slot: SlotResponse
    response: CheckInResponse
    already_linked: bool = Field(
        default=False,
        description="True when the same response was already linked; nothing was written",
    )
    
    @classmethod
    def from_result(cls, result: LinkResult) -> "LinkResultResponse":
        return cls(
            slot=SlotResponse.from_slot(result.slot),
            response=CheckInResponse.from_response(result.response),
            already_linked=result.already_linked,
        )
