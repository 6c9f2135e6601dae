"""
Mapping from lifecycle errors to HTTP errors.

Contract violations are the caller's problem (4xx). Storage failures are
transient (503) so clients know a retry is safe.
"""

import logging

from fastapi import HTTPException, status

from ..core.lifecycle.errors import (
    AlreadyCompleted,
    AmbiguousMatch,
    InvalidInput,
    LifecycleError,
    ResponseNotFound,
    SlotNotFound,
    WriteError,
)

logger = logging.getLogger(__name__)


def to_http_error(error: LifecycleError) -> HTTPException:
    if isinstance(error, InvalidInput):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    
    if isinstance(error, (SlotNotFound, ResponseNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    
    if isinstance(error, AlreadyCompleted):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "already_completed",
                "message": str(error),
                "slot_id": error.slot_id,
                "linked_response_id": error.linked_response_id,
            },
        )
    
    if isinstance(error, AmbiguousMatch):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "ambiguous_match",
                "message": str(error),
                "candidate_ids": error.candidate_ids,
            },
        )
    
    if isinstance(error, WriteError):
        logger.error("Storage write failed", extra={"error": str(error)})
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage temporarily unavailable. The request is safe to retry.",
        )
    
    logger.error("Unmapped lifecycle error", extra={"error": str(error)})
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
