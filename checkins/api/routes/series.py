"""
Check-in series endpoints.

Enrolls a client in a recurring check-in program and lets coaches
inspect or extend the resulting schedule.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from ...core.lifecycle.errors import LifecycleError
from ...core.lifecycle.models import CheckInWindow, EnrollmentParams, SeriesKey
from ..dependencies import AuthenticatedUser, LifecycleDep
from ..errors import to_http_error
from .schemas import SlotResponse

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class CheckInWindowRequest(BaseModel):
    """Weekday/time window in which a check-in may be submitted."""
    enabled: bool = True
    start_day: str = Field(default="friday", description="Weekday the window opens")
    start_time: str = Field(default="10:00", description="HH:MM the window opens")
    end_day: str = Field(default="monday", description="Weekday the window closes")
    end_time: str = Field(default="22:00", description="HH:MM the window closes")


class CreateSeriesRequest(BaseModel):
    """Enrollment parameters for a new recurring check-in."""
    client_id: str = Field(min_length=1)
    form_id: str = Field(min_length=1)
    coach_id: str = Field(min_length=1)
    start_date: Optional[date] = Field(None, description="Program start; defaults to today")
    first_check_in_date: Optional[date] = Field(
        None, description="Date of slot 1; defaults to a week after the start"
    )
    due_time: Optional[str] = Field(None, description="HH:MM; defaults to the configured due time")
    frequency: str = Field(default="weekly", description="once, daily, weekly or fortnightly")
    duration: int = Field(default=4, description="Number of slots planned")
    check_in_window: Optional[CheckInWindowRequest] = None
    precreate: bool = Field(
        default=False,
        description="Create every planned slot now instead of slot 1 only",
    )


class SeriesResponse(BaseModel):
    client_id: str
    form_id: str
    slots: list[SlotResponse]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=SlotResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a check-in series",
    description="Validates the schedule and writes slot 1 (or every slot when precreate is set)",
)
def create_series(
    request: CreateSeriesRequest,
    api_key: AuthenticatedUser,
    lifecycle: LifecycleDep,
) -> SlotResponse:
    try:
        window = None
        if request.check_in_window is not None:
            window = CheckInWindow(**request.check_in_window.model_dump())
        
        params = EnrollmentParams(
            client_id=request.client_id,
            form_id=request.form_id,
            coach_id=request.coach_id,
            start_date=request.start_date,
            first_check_in_date=request.first_check_in_date,
            due_time=request.due_time,
            frequency=request.frequency,
            duration=request.duration,
            check_in_window=window,
        )
        anchor = lifecycle.create_series(params, precreate=request.precreate)
    except LifecycleError as e:
        logger.warning(
            "Series creation rejected",
            extra={"client_id": request.client_id, "form_id": request.form_id, "error": str(e)}
        )
        raise to_http_error(e)
    
    return SlotResponse.from_slot(anchor)


@router.get(
    "/{client_id}/{form_id}",
    response_model=SeriesResponse,
    summary="List a series",
    description="Every slot of the series in sequence order",
)
def list_series(
    client_id: str,
    form_id: str,
    api_key: AuthenticatedUser,
    lifecycle: LifecycleDep,
) -> SeriesResponse:
    slots = lifecycle.list_series(SeriesKey(client_id, form_id))
    if not slots:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No series for client {client_id} and form {form_id}",
        )
    return SeriesResponse(
        client_id=client_id,
        form_id=form_id,
        slots=[SlotResponse.from_slot(s) for s in slots],
    )


@router.post(
    "/{client_id}/{form_id}/advance",
    response_model=SlotResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create the next slot",
    description="Derives the next slot from slot 1 and the series frequency",
)
def advance_series(
    client_id: str,
    form_id: str,
    api_key: AuthenticatedUser,
    lifecycle: LifecycleDep,
) -> SlotResponse:
    try:
        slot = lifecycle.advance_series(SeriesKey(client_id, form_id))
    except LifecycleError as e:
        raise to_http_error(e)
    return SlotResponse.from_slot(slot)
