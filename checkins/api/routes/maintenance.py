"""
Maintenance endpoints: audit, repair and schedule alignment.

These replace one-off migration fix scripts. Repair is a dry run unless
explicitly told otherwise, and every skipped or failed item is listed in
the result.
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from ...core.lifecycle.errors import LifecycleError
from ...core.lifecycle.models import (
    AlignmentReference,
    AlignSummary,
    AuditReport,
    Finding,
    RepairAction,
    RepairSummary,
)
from ..dependencies import AuthenticatedUser, LifecycleDep
from ..errors import to_http_error

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class FindingItem(BaseModel):
    finding_id: str
    kind: str
    reason: str
    client_id: str
    form_id: str
    slot_id: Optional[str] = None
    response_id: Optional[str] = None
    related_ids: list[str] = []
    sequence_number: Optional[int] = None
    
    @classmethod
    def from_finding(cls, finding: Finding) -> "FindingItem":
        return cls(
            finding_id=finding.finding_id,
            kind=finding.kind.value,
            reason=finding.reason.value,
            client_id=finding.series_key.client_id,
            form_id=finding.series_key.form_id,
            slot_id=finding.slot_id,
            response_id=finding.response_id,
            related_ids=list(finding.related_ids),
            sequence_number=finding.sequence_number,
        )


class AuditResponse(BaseModel):
    client_id: Optional[str] = None
    is_clean: bool
    slots_scanned: int
    responses_scanned: int
    consistent_links: int
    counts_by_kind: dict[str, int]
    findings: list[FindingItem]
    
    @classmethod
    def from_report(cls, report: AuditReport) -> "AuditResponse":
        return cls(
            client_id=report.client_id,
            is_clean=report.is_clean,
            slots_scanned=report.slots_scanned,
            responses_scanned=report.responses_scanned,
            consistent_links=report.consistent_links,
            counts_by_kind=report.counts_by_kind,
            findings=[FindingItem.from_finding(f) for f in report.findings],
        )


class RepairRequest(BaseModel):
    client_id: Optional[str] = Field(None, description="Omit to repair every client")
    dry_run: bool = Field(default=True, description="Report planned actions without writing")


class RepairActionItem(BaseModel):
    finding_id: str
    kind: str
    action: str
    outcome: str
    reason: str
    slot_id: Optional[str] = None
    response_id: Optional[str] = None
    before: dict[str, Any] = {}
    after: dict[str, Any] = {}
    timestamp: Optional[datetime] = None
    
    @classmethod
    def from_action(cls, action: RepairAction) -> "RepairActionItem":
        return cls(
            finding_id=action.finding_id,
            kind=action.kind.value,
            action=action.action.value,
            outcome=action.outcome.value,
            reason=action.reason,
            slot_id=action.slot_id,
            response_id=action.response_id,
            before=action.before,
            after=action.after,
            timestamp=action.timestamp,
        )


class RepairResponse(BaseModel):
    client_id: Optional[str] = None
    dry_run: bool
    applied: int
    planned: int
    skipped: int
    manual_review: int
    failed: int
    actions: list[RepairActionItem]
    
    @classmethod
    def from_summary(cls, summary: RepairSummary) -> "RepairResponse":
        return cls(
            client_id=summary.client_id,
            dry_run=summary.dry_run,
            applied=summary.applied,
            planned=summary.planned,
            skipped=summary.skipped,
            manual_review=summary.manual_review,
            failed=summary.failed,
            actions=[RepairActionItem.from_action(a) for a in summary.actions],
        )


class ReferenceFields(BaseModel):
    """Exactly one of reference_client_id or target_date."""
    reference_client_id: Optional[str] = None
    reference_form_id: Optional[str] = Field(None, description="Defaults to the aligned form")
    target_date: Optional[date] = None
    
    def to_reference(self) -> AlignmentReference:
        return AlignmentReference(
            reference_client_id=self.reference_client_id,
            reference_form_id=self.reference_form_id,
            target_date=self.target_date,
        )


class AlignRequest(ReferenceFields):
    client_id: str = Field(min_length=1)
    form_id: str = Field(min_length=1)


class BulkAlignRequest(ReferenceFields):
    client_ids: list[str] = Field(min_length=1)
    form_id: str = Field(min_length=1)


class SkippedSlotItem(BaseModel):
    slot_id: str
    sequence_number: int
    reason: str


class ChunkFailureItem(BaseModel):
    chunk_index: int
    slot_ids: list[str]
    error: str


class AlignResponse(BaseModel):
    client_id: str
    form_id: str
    offset_days: int
    already_aligned: bool
    success: bool
    reference_due_at: datetime
    previous_anchor_due_at: datetime
    new_anchor_due_at: datetime
    total_slots: int
    updated_slot_ids: list[str]
    skipped: list[SkippedSlotItem]
    chunk_failures: list[ChunkFailureItem]
    
    @classmethod
    def from_summary(cls, summary: AlignSummary) -> "AlignResponse":
        return cls(
            client_id=summary.series_key.client_id,
            form_id=summary.series_key.form_id,
            offset_days=summary.offset_days,
            already_aligned=summary.already_aligned,
            success=summary.success,
            reference_due_at=summary.reference_due_at,
            previous_anchor_due_at=summary.previous_anchor_due_at,
            new_anchor_due_at=summary.new_anchor_due_at,
            total_slots=summary.total_slots,
            updated_slot_ids=summary.updated_slot_ids,
            skipped=[SkippedSlotItem(**vars(s)) for s in summary.skipped],
            chunk_failures=[ChunkFailureItem(**vars(c)) for c in summary.chunk_failures],
        )


class BulkAlignResponse(BaseModel):
    success: bool
    results: list[AlignResponse]
    failures: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get(
    "/audit",
    response_model=AuditResponse,
    summary="Audit slot/response links",
    description="Read-only. Lists every broken or ambiguous link for one client or the whole system.",
)
def audit(
    api_key: AuthenticatedUser,
    lifecycle: LifecycleDep,
    client_id: Optional[str] = Query(None, description="Omit to audit every client"),
) -> AuditResponse:
    report = lifecycle.audit(client_id)
    return AuditResponse.from_report(report)


@router.post(
    "/repair",
    response_model=RepairResponse,
    summary="Repair broken links",
    description="Audits then repairs. Dry run by default; manual-review items are always reported.",
)
def repair(
    request: RepairRequest,
    api_key: AuthenticatedUser,
    lifecycle: LifecycleDep,
) -> RepairResponse:
    logger.info(
        "Repair requested",
        extra={"client_id": request.client_id, "dry_run": request.dry_run}
    )
    summary = lifecycle.repair(request.client_id, dry_run=request.dry_run)
    return RepairResponse.from_summary(summary)


@router.post(
    "/align",
    response_model=AlignResponse,
    summary="Align a series to a reference date",
    description="Shifts every slot by a whole number of days; completed history stays put",
)
def align(
    request: AlignRequest,
    api_key: AuthenticatedUser,
    lifecycle: LifecycleDep,
) -> AlignResponse:
    try:
        summary = lifecycle.align(request.client_id, request.form_id, request.to_reference())
    except LifecycleError as e:
        raise to_http_error(e)
    return AlignResponse.from_summary(summary)


@router.post(
    "/align-bulk",
    response_model=BulkAlignResponse,
    summary="Align many clients to one reference",
)
def align_bulk(
    request: BulkAlignRequest,
    api_key: AuthenticatedUser,
    lifecycle: LifecycleDep,
) -> BulkAlignResponse:
    try:
        result = lifecycle.align_bulk(request.client_ids, request.form_id, request.to_reference())
    except LifecycleError as e:
        raise to_http_error(e)
    return BulkAlignResponse(
        success=result.success,
        results=[AlignResponse.from_summary(s) for s in result.summaries],
        failures=result.failures,
    )
