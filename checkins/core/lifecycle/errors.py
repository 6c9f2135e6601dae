"""
Error taxonomy for the check-in lifecycle.

Link and schedule errors are contract violations surfaced to the caller
and never retried. WriteError is the only retryable failure, because every
write in this package is either transactional or safe to repeat.
"""

from typing import Any, Optional, Sequence


class LifecycleError(Exception):
    """Base class for check-in lifecycle failures."""
    pass


class InvalidInput(LifecycleError):
    """Malformed schedule or request parameters. Raised before any write."""
    pass


class SlotNotFound(LifecycleError):
    """No slot matches the given reference."""
    pass


class AlreadyCompleted(LifecycleError):
    """The slot is already linked to a different response."""
    
    def __init__(self, slot_id: str, linked_response_id: Optional[str]) -> None:
        super().__init__(
            f"Slot {slot_id} is already completed by response {linked_response_id}"
        )
        self.slot_id = slot_id
        self.linked_response_id = linked_response_id


class AmbiguousMatch(LifecycleError):
    """More than one pending slot matches; we refuse to pick one."""
    
    def __init__(self, message: str, candidate_ids: Sequence[str]) -> None:
        super().__init__(message)
        self.candidate_ids = list(candidate_ids)


class ManualReviewRequired(LifecycleError):
    """
    A contradiction with no safe automatic resolution.
    
    Carries the slot and response that were read, so the repair report
    can show the state an operator has to look at.
    """
    
    def __init__(self, message: str, slot: Optional[Any] = None, response: Optional[Any] = None) -> None:
        super().__init__(message)
        self.slot = slot
        self.response = response


# ---------------------------------------------------------------------------
# Storage errors
# ---------------------------------------------------------------------------

class WriteError(LifecycleError):
    """Transient storage failure. Safe to retry."""
    pass


class WriteConflict(WriteError):
    """
    A precondition failed inside an atomic write.
    
    Not retried blindly: the caller has to re-read and decide again.
    """
    pass


class BatchTooLarge(WriteError):
    """More operations than the store accepts in one batch."""
    pass


class IndexUnavailable(Exception):
    """An ordered query needs an index the store does not have."""
    pass


class ResponseNotFound(LifecycleError):
    """No response with the given id."""
    pass
