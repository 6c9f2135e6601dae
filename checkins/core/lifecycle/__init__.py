"""
Recurring check-in lifecycle.

Schedule generation, response linking, consistency audit, link repair and
schedule alignment over a pluggable DocumentStore.
"""

from .alignment import ScheduleAligner
from .audit import ConsistencyAuditor, merge_reports
from .errors import (
    AlreadyCompleted,
    AmbiguousMatch,
    BatchTooLarge,
    IndexUnavailable,
    InvalidInput,
    LifecycleError,
    ManualReviewRequired,
    ResponseNotFound,
    SlotNotFound,
    WriteConflict,
    WriteError,
)
from .linking import LinkResolver, SubmissionPayload
from .models import (
    AlignmentReference,
    AlignSummary,
    AuditReport,
    BulkAlignSummary,
    CheckInWindow,
    EnrollmentParams,
    Finding,
    FindingKind,
    Frequency,
    LifecycleConfig,
    LinkResult,
    ReasonCode,
    RepairAction,
    RepairActionType,
    RepairOutcome,
    RepairSummary,
    Response,
    SeriesKey,
    Slot,
    SlotStatus,
)
from .repair import LinkRepairer
from .schedule import ScheduleGenerator
from .service import CheckInLifecycle
from .store import Document, DocumentStore, FieldFilter, WriteOp

__all__ = [
    # Service
    "CheckInLifecycle",
    "ScheduleGenerator",
    "LinkResolver",
    "SubmissionPayload",
    "ConsistencyAuditor",
    "merge_reports",
    "LinkRepairer",
    "ScheduleAligner",
    # Models
    "AlignmentReference",
    "AlignSummary",
    "AuditReport",
    "BulkAlignSummary",
    "CheckInWindow",
    "EnrollmentParams",
    "Finding",
    "FindingKind",
    "Frequency",
    "LifecycleConfig",
    "LinkResult",
    "ReasonCode",
    "RepairAction",
    "RepairActionType",
    "RepairOutcome",
    "RepairSummary",
    "Response",
    "SeriesKey",
    "Slot",
    "SlotStatus",
    # Storage
    "Document",
    "DocumentStore",
    "FieldFilter",
    "WriteOp",
    # Errors
    "LifecycleError",
    "InvalidInput",
    "SlotNotFound",
    "ResponseNotFound",
    "AlreadyCompleted",
    "AmbiguousMatch",
    "ManualReviewRequired",
    "WriteError",
    "WriteConflict",
    "BatchTooLarge",
    "IndexUnavailable",
]
