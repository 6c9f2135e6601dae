"""
Check-in response endpoints.

Submitting a response links it to exactly one slot. Conflicts are
reported, never resolved by guessing.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from ...core.lifecycle.errors import LifecycleError
from ...core.lifecycle.linking import SubmissionPayload
from ..dependencies import AuthenticatedUser, LifecycleDep
from ..errors import to_http_error
from .schemas import LinkResultResponse

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class SubmitResponseRequest(BaseModel):
    """A client's check-in submission."""
    client_id: str = Field(min_length=1)
    form_id: str = Field(min_length=1)
    slot_id: Optional[str] = Field(None, description="Slot being answered, if known")
    sequence_number: Optional[int] = Field(None, description="Week number, used when slot_id is absent or taken")
    score: Optional[float] = None
    submitted_at: Optional[datetime] = None
    response_id: Optional[str] = Field(
        None, description="Client-chosen id; resubmitting the same id is a no-op"
    )


class ReassignRequest(BaseModel):
    client_id: str = Field(min_length=1)
    target_sequence: int = Field(ge=1, description="Week the response belongs to")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=LinkResultResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a check-in response",
    description="Creates the response and completes its slot in one atomic write",
    responses={
        404: {"description": "No matching slot"},
        409: {"description": "Slot already completed, or several slots match"},
    },
)
def submit_response(
    request: SubmitResponseRequest,
    api_key: AuthenticatedUser,
    lifecycle: LifecycleDep,
) -> LinkResultResponse:
    logger.info(
        "Submitting response",
        extra={
            "client_id": request.client_id,
            "form_id": request.form_id,
            "slot_id": request.slot_id,
            "sequence_number": request.sequence_number,
        }
    )
    try:
        result = lifecycle.submit_response(
            request.client_id,
            request.form_id,
            SubmissionPayload(
                score=request.score,
                submitted_at=request.submitted_at,
                response_id=request.response_id,
            ),
            slot_id=request.slot_id,
            sequence_number=request.sequence_number,
        )
    except LifecycleError as e:
        logger.warning(
            "Response rejected",
            extra={"client_id": request.client_id, "error": str(e)}
        )
        raise to_http_error(e)
    
    return LinkResultResponse.from_result(result)


@router.post(
    "/{response_id}/reassign",
    response_model=LinkResultResponse,
    summary="Move a response to another week",
    description="Re-points the response, completes the target slot and reopens the old one atomically",
)
def reassign_response(
    response_id: str,
    request: ReassignRequest,
    api_key: AuthenticatedUser,
    lifecycle: LifecycleDep,
) -> LinkResultResponse:
    try:
        result = lifecycle.reassign_response(request.client_id, response_id, request.target_sequence)
    except LifecycleError as e:
        raise to_http_error(e)
    return LinkResultResponse.from_result(result)
