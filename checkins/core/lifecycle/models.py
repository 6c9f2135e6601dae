"""
Domain models for the recurring check-in lifecycle.

These models represent the core business concepts. They have no dependencies
on external frameworks, databases, or APIs. Translation to and from stored
documents lives in documents.py.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Optional

from .errors import InvalidInput


WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_due_time(value: str) -> time:
    """Parse HH:MM into a time. Raises InvalidInput on anything else."""
    match = _TIME_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise InvalidInput(f"Time must be HH:MM, got {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidInput(f"Time out of range: {value!r}")
    return time(hours, minutes)


class SlotStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class Frequency(Enum):
    """How often a series recurs."""
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    
    @property
    def period(self) -> Optional[timedelta]:
        """Gap between consecutive slots; None for one-off series."""
        days = {
            Frequency.DAILY: 1,
            Frequency.WEEKLY: 7,
            Frequency.FORTNIGHTLY: 14,
        }.get(self)
        return timedelta(days=days) if days else None
    
    @classmethod
    def parse(cls, value: str) -> "Frequency":
        try:
            return cls(value.lower())
        except (ValueError, AttributeError):
            raise InvalidInput(f"Unsupported frequency: {value!r}")


@dataclass(frozen=True)
class SeriesKey:
    """
    Identity of one recurring program: a client filling in one form.
    
    Frozen because keys are values. Used as the partition key for every
    series-scoped read and write.
    """
    client_id: str
    form_id: str
    
    def __str__(self) -> str:
        return f"{self.client_id}/{self.form_id}"


@dataclass(frozen=True)
class CheckInWindow:
    """
    Acceptable submission window around a slot's due date.
    
    Days are weekday names. The window opens on the most recent start_day
    on or before the due date and closes on the next end_day after that.
    """
    enabled: bool = True
    start_day: str = "friday"
    start_time: str = "10:00"
    end_day: str = "monday"
    end_time: str = "22:00"
    
    def __post_init__(self) -> None:
        for day in (self.start_day, self.end_day):
            if day.lower() not in WEEKDAYS:
                raise InvalidInput(f"Unknown weekday: {day!r}")
        parse_due_time(self.start_time)
        parse_due_time(self.end_time)
    
    def bounds_for(self, due_at: datetime) -> tuple[Optional[datetime], Optional[datetime]]:
        """Window start and end for a slot due at due_at; (None, None) when always open."""
        if not self.enabled:
            return None, None
        
        back = (due_at.weekday() - WEEKDAYS[self.start_day.lower()]) % 7
        start_date = due_at.date() - timedelta(days=back)
        start = datetime.combine(start_date, parse_due_time(self.start_time))
        
        forward = (WEEKDAYS[self.end_day.lower()] - start_date.weekday()) % 7
        end = datetime.combine(start_date + timedelta(days=forward), parse_due_time(self.end_time))
        if end <= start:
            end += timedelta(days=7)
        return start, end
    
    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "startDay": self.start_day,
            "startTime": self.start_time,
            "endDay": self.end_day,
            "endTime": self.end_time,
        }


DEFAULT_CHECK_IN_WINDOW = CheckInWindow()


@dataclass(frozen=True)
class LifecycleConfig:
    """
    Configuration injected into the generator, aligner and repairer.
    
    Built from Settings in production; tests construct it directly.
    """
    due_time: time = time(9, 0)
    check_in_window: CheckInWindow = DEFAULT_CHECK_IN_WINDOW
    batch_size: int = 500
    write_retry_attempts: int = 3
    max_workers: int = 4


@dataclass
class EnrollmentParams:
    """Inputs for creating a series."""
    client_id: str
    form_id: str
    coach_id: str
    start_date: Optional[date] = None
    first_check_in_date: Optional[date] = None
    due_time: Optional[str] = None
    frequency: str = "weekly"
    duration: int = 4
    check_in_window: Optional[CheckInWindow] = None


@dataclass
class Slot:
    """
    One scheduled occurrence of a recurring check-in.
    
    A slot is Pending until exactly one response completes it. The
    response id, completion time and score are only set while Completed.
    """
    slot_id: str
    client_id: str
    form_id: str
    coach_id: str
    sequence_number: int
    total_slots_planned: int
    due_at: datetime
    frequency: Frequency = Frequency.WEEKLY
    start_date: Optional[date] = None
    check_in_window_start: Optional[datetime] = None
    check_in_window_end: Optional[datetime] = None
    status: SlotStatus = SlotStatus.PENDING
    linked_response_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    score: Optional[float] = None
    legacy_id: Optional[str] = None
    
    @property
    def series_key(self) -> SeriesKey:
        return SeriesKey(self.client_id, self.form_id)
    
    @property
    def is_anchor(self) -> bool:
        return self.sequence_number == 1
    
    @property
    def is_completed(self) -> bool:
        return self.status == SlotStatus.COMPLETED
    
    @property
    def is_open(self) -> bool:
        """Pending with no link of any kind; safe to attach a response to."""
        return self.status == SlotStatus.PENDING and self.linked_response_id is None
    
    @property
    def has_protected_history(self) -> bool:
        """Completed with a response; alignment must not move it unless it is the anchor."""
        return self.is_completed and self.linked_response_id is not None
    
    def matches(self, other_id: Optional[str]) -> bool:
        """True if other_id names this slot by document id or legacy id."""
        return other_id is not None and other_id in (self.slot_id, self.legacy_id)


@dataclass
class Response:
    """A client's submission for one slot."""
    response_id: str
    client_id: str
    form_id: str
    coach_id: str
    submitted_at: datetime
    linked_slot_id: Optional[str] = None
    sequence_number: Optional[int] = None
    score: Optional[float] = None
    
    @property
    def series_key(self) -> SeriesKey:
        return SeriesKey(self.client_id, self.form_id)


@dataclass
class LinkResult:
    """Outcome of attaching a response to a slot."""
    slot: Slot
    response: Response
    already_linked: bool = False


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

class FindingKind(Enum):
    """
    Classification of a broken record.
    
    Declaration order is the report order.
    """
    MISSING_ANCHOR = "missing_anchor"
    DUPLICATE_SEQUENCE = "duplicate_sequence"
    ORPHAN_SLOT = "orphan_slot"
    ORPHAN_RESPONSE = "orphan_response"
    MISMATCHED_LINK = "mismatched_link"


class ReasonCode(Enum):
    """Machine-readable detail for a finding."""
    NO_ANCHOR_SLOT = "no_anchor_slot"
    SEQUENCE_REUSED = "sequence_reused"
    COMPLETED_WITHOUT_RESPONSE = "completed_without_response"
    RESPONSE_MISSING = "response_missing"
    PENDING_SLOT_DANGLING_RESPONSE = "pending_slot_dangling_response"
    RESPONSE_UNLINKED = "response_unlinked"
    SLOT_MISSING = "slot_missing"
    PENDING_SLOT_HOLDS_LINK = "pending_slot_holds_link"
    RESPONSE_POINTS_ELSEWHERE = "response_points_elsewhere"
    SLOT_RESPONSE_MISSING_BUT_CLAIMED = "slot_response_missing_but_claimed"
    SLOT_MISSING_BACK_REFERENCE = "slot_missing_back_reference"
    SLOT_CLAIMED_BY_MULTIPLE_RESPONSES = "slot_claimed_by_multiple_responses"
    DUPLICATE_CLAIM = "duplicate_claim"


_KIND_ORDER = {kind: index for index, kind in enumerate(FindingKind)}


@dataclass(frozen=True)
class Finding:
    """
    One inconsistency found by the auditor.
    
    Frozen and identified by content, so two audits over the same data
    produce equal findings regardless of storage iteration order.
    """
    kind: FindingKind
    reason: ReasonCode
    series_key: SeriesKey
    slot_id: Optional[str] = None
    response_id: Optional[str] = None
    related_ids: tuple[str, ...] = ()
    sequence_number: Optional[int] = None
    
    @property
    def finding_id(self) -> str:
        parts = [self.kind.value, str(self.series_key), self.slot_id or "-", self.response_id or "-"]
        if self.related_ids:
            parts.append(",".join(self.related_ids))
        return ":".join(parts)
    
    @property
    def sort_key(self) -> tuple:
        return (
            self.series_key.client_id,
            self.series_key.form_id,
            _KIND_ORDER[self.kind],
            self.slot_id or "",
            self.response_id or "",
            self.related_ids,
        )


@dataclass
class AuditReport:
    """Flat, ordered list of findings for one scope."""
    client_id: Optional[str] = None
    findings: list[Finding] = field(default_factory=list)
    slots_scanned: int = 0
    responses_scanned: int = 0
    consistent_links: int = 0
    
    def __iter__(self):
        return iter(self.findings)
    
    def __len__(self) -> int:
        return len(self.findings)
    
    @property
    def is_clean(self) -> bool:
        return not self.findings
    
    @property
    def counts_by_kind(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for finding in self.findings:
            counts[finding.kind.value] = counts.get(finding.kind.value, 0) + 1
        return counts
    
    def for_series(self, key: SeriesKey) -> list[Finding]:
        return [f for f in self.findings if f.series_key == key]


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------

class RepairActionType(Enum):
    RELINK_RESPONSE = "relink_response"
    RESET_SLOT = "reset_slot"
    COMPLETE_SLOT = "complete_slot"
    NONE = "none"


class RepairOutcome(Enum):
    APPLIED = "applied"
    PLANNED = "planned"  # dry run
    ALREADY_APPLIED = "already_applied"
    SKIPPED = "skipped"
    MANUAL_REVIEW_REQUIRED = "manual_review_required"
    FAILED = "failed"


@dataclass
class RepairAction:
    """What the repairer did (or would do) about one finding."""
    finding_id: str
    kind: FindingKind
    action: RepairActionType
    outcome: RepairOutcome
    reason: str = ""
    slot_id: Optional[str] = None
    response_id: Optional[str] = None
    before: dict[str, Any] = field(default_factory=dict)
    after: dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


@dataclass
class RepairSummary:
    """Every action taken or skipped during one repair run."""
    client_id: Optional[str] = None
    dry_run: bool = True
    actions: list[RepairAction] = field(default_factory=list)
    
    def _count(self, outcome: RepairOutcome) -> int:
        return sum(1 for a in self.actions if a.outcome == outcome)
    
    @property
    def applied(self) -> int:
        return self._count(RepairOutcome.APPLIED)
    
    @property
    def planned(self) -> int:
        return self._count(RepairOutcome.PLANNED)
    
    @property
    def skipped(self) -> int:
        return self._count(RepairOutcome.SKIPPED) + self._count(RepairOutcome.ALREADY_APPLIED)
    
    @property
    def manual_review(self) -> int:
        return self._count(RepairOutcome.MANUAL_REVIEW_REQUIRED)
    
    @property
    def failed(self) -> int:
        return self._count(RepairOutcome.FAILED)


# ---------------------------------------------------------------------------
# Alignment
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AlignmentReference:
    """
    What to align a series to: another client's anchor or a calendar date.
    
    reference_form_id defaults to the aligned series' own form.
    """
    reference_client_id: Optional[str] = None
    reference_form_id: Optional[str] = None
    target_date: Optional[date] = None
    
    def __post_init__(self) -> None:
        if (self.reference_client_id is None) == (self.target_date is None):
            raise InvalidInput("Provide exactly one of reference_client_id or target_date")


@dataclass
class SkippedSlot:
    slot_id: str
    sequence_number: int
    reason: str


@dataclass
class ChunkFailure:
    chunk_index: int
    slot_ids: list[str]
    error: str


@dataclass
class AlignSummary:
    """Result of shifting one series; every skipped slot and failed chunk is listed."""
    series_key: SeriesKey
    offset_days: int
    reference_due_at: datetime
    previous_anchor_due_at: datetime
    new_anchor_due_at: datetime
    updated_slot_ids: list[str] = field(default_factory=list)
    skipped: list[SkippedSlot] = field(default_factory=list)
    chunk_failures: list[ChunkFailure] = field(default_factory=list)
    total_slots: int = 0
    
    @property
    def already_aligned(self) -> bool:
        return self.offset_days == 0
    
    @property
    def success(self) -> bool:
        return not self.chunk_failures


@dataclass
class BulkAlignSummary:
    """Per-client results of aligning many series to one reference."""
    summaries: list[AlignSummary] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    
    @property
    def success(self) -> bool:
        return not self.failures and all(s.success for s in self.summaries)
