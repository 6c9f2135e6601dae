"""
Repair of broken slot/response links.

Consumes audit findings and applies the smallest safe correction for each.
Every plan is made against freshly read state and every write carries
preconditions, so a finding that was already fixed is recognised and left
alone, and a repair run can be interrupted and re-run at any point.

Nothing is ever guessed. When the data does not say which side is right
the action is reported as manual review and nothing is written.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .documents import (
    PENDING_FIELDS,
    completion_fields,
    get_response,
    get_slot,
    link_state,
    response_from_document,
    slot_from_document,
)
from .errors import ManualReviewRequired, WriteConflict, WriteError
from .models import (
    AuditReport,
    Finding,
    FindingKind,
    LifecycleConfig,
    ReasonCode,
    RepairAction,
    RepairActionType,
    RepairOutcome,
    RepairSummary,
    Response,
    SeriesKey,
    Slot,
)
from .schedule import new_id
from .store import (
    DocumentStore,
    FieldFilter,
    REPAIR_LOG,
    RESPONSES,
    SLOTS,
    WriteOp,
    series_filters,
    with_write_retry,
)


logger = logging.getLogger(__name__)


@dataclass
class _Plan:
    """What to do about one finding, before deciding whether to write."""
    action: RepairActionType
    outcome: Optional[RepairOutcome] = None  # None means there is something to write
    reason: str = ""
    slot: Optional[Slot] = None
    response: Optional[Response] = None
    ops: list[WriteOp] = field(default_factory=list)
    
    @property
    def writes(self) -> bool:
        return self.outcome is None and bool(self.ops)


def _skip(reason: str, slot: Optional[Slot] = None, response: Optional[Response] = None) -> _Plan:
    return _Plan(RepairActionType.NONE, RepairOutcome.SKIPPED, reason, slot, response)


def _done(action: RepairActionType, slot: Optional[Slot] = None, response: Optional[Response] = None) -> _Plan:
    return _Plan(action, RepairOutcome.ALREADY_APPLIED, "already consistent", slot, response)


class LinkRepairer:
    """
    Applies corrections for audit findings, one series at a time.
    
    In dry-run mode the same plans are computed and reported as PLANNED
    without writing anything, so an operator can review a destructive
    pass before running it.
    """
    
    def __init__(self, store: DocumentStore, config: LifecycleConfig) -> None:
        self._store = store
        self._config = config
    
    def repair(self, report: AuditReport, dry_run: bool = True) -> RepairSummary:
        summary = RepairSummary(client_id=report.client_id, dry_run=dry_run)
        
        by_series: "OrderedDict[SeriesKey, list[Finding]]" = OrderedDict()
        for finding in report.findings:
            by_series.setdefault(finding.series_key, []).append(finding)
        
        for key, findings in by_series.items():
            summary.actions.extend(self.repair_series(key, findings, dry_run))
        
        logger.info(
            "Repair run complete",
            extra={
                "client_id": report.client_id,
                "dry_run": dry_run,
                "applied": summary.applied,
                "planned": summary.planned,
                "skipped": summary.skipped,
                "manual_review": summary.manual_review,
                "failed": summary.failed,
            }
        )
        return summary
    
    def repair_series(self, key: SeriesKey, findings: list[Finding], dry_run: bool) -> list[RepairAction]:
        """
        Repair one series in finding order.
        
        Each finding is committed as its own atomic write together with its
        repair_log record, and is planned against the state the previous
        findings left. A failed write fails only that finding.
        """
        logger.info(
            "Repairing series",
            extra={"series": str(key), "findings": len(findings), "dry_run": dry_run}
        )
        return [self._repair_one(finding, dry_run) for finding in findings]
    
    # -----------------------------------------------------------------------
    # Execution
    # -----------------------------------------------------------------------
    
    def _repair_one(self, finding: Finding, dry_run: bool) -> RepairAction:
        try:
            plan = self._plan(finding)
        except ManualReviewRequired as e:
            plan = _Plan(
                RepairActionType.NONE,
                RepairOutcome.MANUAL_REVIEW_REQUIRED,
                str(e),
                e.slot,
                e.response,
            )
        now = datetime.now(timezone.utc)
        before = link_state(plan.slot, plan.response)
        after = self._after_state(plan) if plan.writes else {}
        
        action = RepairAction(
            finding_id=finding.finding_id,
            kind=finding.kind,
            action=plan.action,
            outcome=plan.outcome or (RepairOutcome.PLANNED if dry_run else RepairOutcome.APPLIED),
            reason=plan.reason,
            slot_id=plan.slot.slot_id if plan.slot else finding.slot_id,
            response_id=plan.response.response_id if plan.response else finding.response_id,
            before=before,
            after=after,
            timestamp=now,
        )
        
        if plan.writes and not dry_run:
            log_entry = WriteOp(
                REPAIR_LOG,
                new_id(),
                {
                    "findingId": finding.finding_id,
                    "kind": finding.kind.value,
                    "reason": finding.reason.value,
                    "action": plan.action.value,
                    "clientId": finding.series_key.client_id,
                    "formId": finding.series_key.form_id,
                    "beforeState": before,
                    "afterState": after,
                    "timestamp": now.isoformat(),
                },
                merge=False,
            )
            ops = plan.ops + [log_entry]
            try:
                with_write_retry(
                    lambda: self._store.atomic_write(ops), self._config.write_retry_attempts
                )
            except WriteConflict as e:
                action.outcome = RepairOutcome.FAILED
                action.reason = f"state changed while repairing, re-run the audit: {e}"
            except WriteError as e:
                action.outcome = RepairOutcome.FAILED
                action.reason = f"write failed: {e}"
        
        log = logger.warning if action.outcome in (
            RepairOutcome.FAILED, RepairOutcome.MANUAL_REVIEW_REQUIRED
        ) else logger.info
        log(
            "Repair action",
            extra={
                "finding_id": action.finding_id,
                "action": action.action.value,
                "outcome": action.outcome.value,
                "reason": action.reason,
                "slot_id": action.slot_id,
                "response_id": action.response_id,
            }
        )
        return action
    
    @staticmethod
    def _after_state(plan: _Plan) -> dict[str, Any]:
        state: dict[str, Any] = {}
        for op in plan.ops:
            label = "slot" if op.collection == SLOTS else "response"
            state.setdefault(label, {"id": op.doc_id}).update(op.fields)
        return state
    
    # -----------------------------------------------------------------------
    # Planning
    # -----------------------------------------------------------------------
    
    def _plan(self, finding: Finding) -> _Plan:
        if finding.kind == FindingKind.MISSING_ANCHOR:
            raise ManualReviewRequired("series has no slot with sequence 1")
        if finding.kind == FindingKind.DUPLICATE_SEQUENCE:
            raise ManualReviewRequired(f"sequence {finding.sequence_number} is used by several slots")
        if finding.kind == FindingKind.ORPHAN_SLOT:
            return self._plan_orphan_slot(finding)
        if finding.kind == FindingKind.ORPHAN_RESPONSE:
            return self._plan_orphan_response(finding)
        
        planners = {
            ReasonCode.PENDING_SLOT_HOLDS_LINK: self._plan_pending_holds_link,
            ReasonCode.RESPONSE_POINTS_ELSEWHERE: self._plan_points_elsewhere,
            ReasonCode.SLOT_RESPONSE_MISSING_BUT_CLAIMED: self._plan_missing_but_claimed,
            ReasonCode.SLOT_MISSING_BACK_REFERENCE: self._plan_missing_back_reference,
            ReasonCode.DUPLICATE_CLAIM: self._plan_duplicate_claim,
        }
        planner = planners.get(finding.reason)
        if planner is None:
            raise ManualReviewRequired(f"no automatic repair for {finding.reason.value}")
        return planner(finding)
    
    def _plan_orphan_slot(self, finding: Finding) -> _Plan:
        slot = get_slot(self._store, finding.slot_id)
        if slot is None:
            return _skip("slot no longer exists")
        if self._is_clean_pending(slot):
            return _done(RepairActionType.RESET_SLOT, slot)
        
        response = get_response(self._store, slot.linked_response_id)
        if response is not None:
            return _skip("slot's response exists now; re-run the audit", slot, response)
        if self._claimants(slot):
            return _skip("responses now point at this slot; re-run the audit", slot)
        
        return _Plan(
            RepairActionType.RESET_SLOT,
            reason="response missing; slot reopened for a clean submission",
            slot=slot,
            ops=[self._reset_op(slot)],
        )
    
    def _plan_orphan_response(self, finding: Finding) -> _Plan:
        response = get_response(self._store, finding.response_id)
        if response is None:
            return _skip("response no longer exists")
        
        current = get_slot(self._store, response.linked_slot_id)
        if current is not None:
            if current.linked_response_id == response.response_id:
                return _done(RepairActionType.RELINK_RESPONSE, current, response)
            return _skip("response's slot exists now; re-run the audit", current, response)
        
        if response.linked_slot_id is None:
            raise ManualReviewRequired("response has no slot reference to repair", response=response)
        if response.sequence_number is None:
            raise ManualReviewRequired("response has no sequence number to match on", response=response)
        
        candidates = [
            slot for slot in self._series_slots(response.series_key, response.sequence_number)
            if self._accepts_link(slot)
        ]
        candidates = [slot for slot in candidates if not self._claimants(slot)]
        
        if not candidates:
            return _skip(
                f"no open slot with sequence {response.sequence_number}; left unresolved",
                response=response,
            )
        if len(candidates) > 1:
            raise ManualReviewRequired(
                f"{len(candidates)} open slots share sequence {response.sequence_number}",
                response=response,
            )
        
        slot = candidates[0]
        return _Plan(
            RepairActionType.RELINK_RESPONSE,
            reason=f"relinked to slot with sequence {slot.sequence_number}",
            slot=slot,
            response=response,
            ops=self._link_ops(slot, response),
        )
    
    def _plan_pending_holds_link(self, finding: Finding) -> _Plan:
        slot = get_slot(self._store, finding.slot_id)
        response = get_response(self._store, finding.response_id)
        if slot is None or response is None:
            return _skip("slot or response no longer exists", slot, response)
        if slot.linked_response_id != response.response_id or not slot.matches(response.linked_slot_id):
            return _skip("link changed; re-run the audit", slot, response)
        if slot.is_completed:
            return _done(RepairActionType.COMPLETE_SLOT, slot, response)
        
        return _Plan(
            RepairActionType.COMPLETE_SLOT,
            reason="slot and response agree; status brought in line",
            slot=slot,
            response=response,
            ops=[WriteOp(
                SLOTS,
                slot.slot_id,
                completion_fields(response),
                precondition={"linkedResponseId": response.response_id},
            )],
        )
    
    def _plan_points_elsewhere(self, finding: Finding) -> _Plan:
        slot = get_slot(self._store, finding.slot_id)
        response = get_response(self._store, finding.response_id)
        if slot is None or response is None:
            return _skip("slot or response no longer exists", slot, response)
        if slot.linked_response_id != response.response_id:
            return _skip("slot no longer holds the response; re-run the audit", slot, response)
        if slot.matches(response.linked_slot_id):
            return _done(RepairActionType.RELINK_RESPONSE, slot, response)
        
        holders = self._holders(response)
        other = get_slot(self._store, response.linked_slot_id)
        
        if other is None:
            if len(holders) > 1:
                raise ManualReviewRequired(
                    f"{len(holders)} slots hold the response and it points at none of them",
                    slot, response,
                )
            # The slot is the only side that still names a real record
            ops = [WriteOp(
                RESPONSES,
                response.response_id,
                {"linkedSlotId": slot.slot_id, "sequenceNumber": slot.sequence_number},
                precondition={"linkedSlotId": response.linked_slot_id},
            )]
            if not slot.is_completed:
                ops.append(WriteOp(
                    SLOTS,
                    slot.slot_id,
                    completion_fields(response),
                    precondition={"linkedResponseId": response.response_id},
                ))
            return _Plan(
                RepairActionType.RELINK_RESPONSE,
                reason="response's slot reference was missing; pointed back at the slot holding it",
                slot=slot,
                response=response,
                ops=ops,
            )
        
        if other.linked_response_id == response.response_id:
            # Response and the other slot agree with each other
            return _Plan(
                RepairActionType.RESET_SLOT,
                reason=f"response is linked to slot {other.slot_id}; stale reference cleared",
                slot=slot,
                response=response,
                ops=[self._reset_op(slot)],
            )
        
        raise ManualReviewRequired(
            f"slot holds the response but the response points at slot {other.slot_id}, "
            "which does not hold it",
            slot, response,
        )
    
    def _plan_missing_but_claimed(self, finding: Finding) -> _Plan:
        slot = get_slot(self._store, finding.slot_id)
        if slot is None:
            return _skip("slot no longer exists")
        
        held = get_response(self._store, slot.linked_response_id)
        if held is not None:
            if slot.matches(held.linked_slot_id):
                return _done(RepairActionType.COMPLETE_SLOT, slot, held)
            return _skip("slot's response exists now; re-run the audit", slot, held)
        
        claimants = self._claimants(slot)
        if not claimants:
            return _skip("no response points at the slot any more; re-run the audit", slot)
        if len(claimants) > 1:
            raise ManualReviewRequired(f"{len(claimants)} responses point at the slot", slot)
        
        response = claimants[0]
        return _Plan(
            RepairActionType.COMPLETE_SLOT,
            reason="slot's response was missing; linked to the response pointing at it",
            slot=slot,
            response=response,
            ops=self._link_ops(slot, response, expected_slot_link=slot.linked_response_id),
        )
    
    def _plan_missing_back_reference(self, finding: Finding) -> _Plan:
        slot = get_slot(self._store, finding.slot_id)
        response = get_response(self._store, finding.response_id)
        if slot is None or response is None:
            return _skip("slot or response no longer exists", slot, response)
        if slot.linked_response_id == response.response_id:
            if slot.is_completed:
                return _done(RepairActionType.COMPLETE_SLOT, slot, response)
            return _skip("slot holds the response now; re-run the audit", slot, response)
        if slot.linked_response_id is not None:
            return _skip("slot was linked elsewhere meanwhile; re-run the audit", slot, response)
        if not slot.matches(response.linked_slot_id):
            return _skip("response points elsewhere now; re-run the audit", slot, response)
        
        claimants = self._claimants(slot)
        if len(claimants) > 1:
            raise ManualReviewRequired(f"{len(claimants)} responses point at the slot", slot, response)
        
        return _Plan(
            RepairActionType.COMPLETE_SLOT,
            reason="response pointed at the slot; slot's back reference restored",
            slot=slot,
            response=response,
            ops=self._link_ops(slot, response),
        )
    
    def _plan_duplicate_claim(self, finding: Finding) -> _Plan:
        response = get_response(self._store, finding.response_id)
        taken = get_slot(self._store, finding.slot_id)
        if response is None or taken is None:
            return _skip("slot or response no longer exists", taken, response)
        if taken.linked_response_id == response.response_id:
            return _done(RepairActionType.RELINK_RESPONSE, taken, response)
        if response.sequence_number is None:
            raise ManualReviewRequired("response duplicates a completed slot and has no sequence number", taken, response)
        
        candidates = [
            slot for slot in self._series_slots(response.series_key, response.sequence_number)
            if slot.slot_id != taken.slot_id
            and self._accepts_link(slot)
            and not self._claimants(slot)
        ]
        if len(candidates) != 1:
            raise ManualReviewRequired(
                f"slot {taken.slot_id} already holds response {taken.linked_response_id}; "
                f"{len(candidates)} other open slots with sequence {response.sequence_number}",
                taken, response,
            )
        
        slot = candidates[0]
        return _Plan(
            RepairActionType.RELINK_RESPONSE,
            reason=f"relinked away from completed slot {taken.slot_id}",
            slot=slot,
            response=response,
            ops=self._link_ops(slot, response),
        )
    
    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------
    
    def _series_slots(self, key: SeriesKey, sequence_number: int) -> list[Slot]:
        filters = series_filters(key.client_id, key.form_id)
        filters.append(FieldFilter("sequenceNumber", sequence_number))
        return sorted(
            (slot_from_document(d) for d in self._store.query(SLOTS, filters)),
            key=lambda s: s.slot_id,
        )
    
    def _claimants(self, slot: Slot) -> list[Response]:
        """Responses whose reference names this slot."""
        found: dict[str, Response] = {}
        for ref in filter(None, (slot.slot_id, slot.legacy_id)):
            for document in self._store.query(RESPONSES, [FieldFilter("linkedSlotId", ref)]):
                found.setdefault(document.id, response_from_document(document))
        return [found[k] for k in sorted(found)]
    
    def _holders(self, response: Response) -> list[Slot]:
        """Slots whose reference names this response."""
        documents = self._store.query(SLOTS, [FieldFilter("linkedResponseId", response.response_id)])
        return sorted((slot_from_document(d) for d in documents), key=lambda s: s.slot_id)
    
    @staticmethod
    def _accepts_link(slot: Slot) -> bool:
        """Pending, or completed but holding no response."""
        return slot.linked_response_id is None
    
    @staticmethod
    def _is_clean_pending(slot: Slot) -> bool:
        return (
            slot.is_open
            and slot.completed_at is None
            and slot.score is None
        )
    
    @staticmethod
    def _reset_op(slot: Slot) -> WriteOp:
        return WriteOp(
            SLOTS,
            slot.slot_id,
            dict(PENDING_FIELDS),
            precondition={"linkedResponseId": slot.linked_response_id},
        )
    
    @staticmethod
    def _link_ops(
        slot: Slot,
        response: Response,
        expected_slot_link: Optional[str] = None,
    ) -> list[WriteOp]:
        """Both halves of a link, guarded against concurrent changes."""
        return [
            WriteOp(
                RESPONSES,
                response.response_id,
                {"linkedSlotId": slot.slot_id, "sequenceNumber": slot.sequence_number},
                precondition={"linkedSlotId": response.linked_slot_id},
            ),
            WriteOp(
                SLOTS,
                slot.slot_id,
                completion_fields(response),
                precondition={"linkedResponseId": expected_slot_link},
            ),
        ]
