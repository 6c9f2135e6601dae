"""
Read-only consistency audit of slots and responses.

Every completed slot must hold a response that points back at it, and
every response must point at a slot that points back at it. The auditor
classifies everything that breaks this into a flat list of findings.

The audit never writes. Inputs are sorted before classification and the
findings are sorted after it, so two audits of unchanged data produce
identical reports whatever order the store returns documents in.
"""

import logging
from collections import defaultdict
from typing import Optional

from .documents import get_response, get_slot, load_responses, load_slots
from .models import (
    AuditReport,
    Finding,
    FindingKind,
    ReasonCode,
    Response,
    SeriesKey,
    Slot,
)
from .store import DocumentStore


logger = logging.getLogger(__name__)


class ConsistencyAuditor:
    """Classifies every slot/response pair in a scope."""
    
    def __init__(self, store: DocumentStore) -> None:
        self._store = store
    
    def audit(self, client_id: Optional[str] = None) -> AuditReport:
        """
        Audit one client, or the whole system when client_id is None.
        
        References that leave the scope (a client's response pointing at
        another client's slot) are resolved against the store directly.
        """
        slots = load_slots(self._store, client_id)
        responses = load_responses(self._store, client_id)
        report = _Classifier(self._store, slots, responses, scoped=client_id is not None).run()
        report.client_id = client_id
        
        logger.info(
            "Audit complete",
            extra={
                "client_id": client_id,
                "slots": report.slots_scanned,
                "responses": report.responses_scanned,
                "findings": len(report.findings),
                "by_kind": report.counts_by_kind,
            }
        )
        return report


def merge_reports(reports: list[AuditReport], client_id: Optional[str] = None) -> AuditReport:
    """Combine per-client reports into one, deduplicated and in report order."""
    merged: dict[str, Finding] = {}
    for report in reports:
        for finding in report.findings:
            merged.setdefault(finding.finding_id, finding)
    return AuditReport(
        client_id=client_id,
        findings=sorted(merged.values(), key=lambda f: f.sort_key),
        slots_scanned=sum(r.slots_scanned for r in reports),
        responses_scanned=sum(r.responses_scanned for r in reports),
        consistent_links=sum(r.consistent_links for r in reports),
    )


class _Classifier:
    """One audit pass over an in-memory snapshot."""
    
    def __init__(
        self,
        store: DocumentStore,
        slots: list[Slot],
        responses: list[Response],
        scoped: bool,
    ) -> None:
        self._store = store
        self._scoped = scoped
        self._slots = sorted(
            slots, key=lambda s: (s.client_id, s.form_id, s.sequence_number, s.slot_id)
        )
        self._responses = sorted(responses, key=lambda r: r.response_id)
        
        self._slot_index: dict[str, Slot] = {s.slot_id: s for s in self._slots}
        for slot in self._slots:
            if slot.legacy_id and slot.legacy_id not in self._slot_index:
                self._slot_index[slot.legacy_id] = slot
        self._response_index: dict[str, Response] = {r.response_id: r for r in self._responses}
        
        self._outside_slots: dict[str, Optional[Slot]] = {}
        self._outside_responses: dict[str, Optional[Response]] = {}
        self._findings: dict[str, Finding] = {}
        self._consistent = 0
    
    def run(self) -> AuditReport:
        # Which responses point at each slot, and which slots hold each response
        self._claims: dict[str, list[str]] = defaultdict(list)
        for response in self._responses:
            target = self._find_slot(response.linked_slot_id)
            if target is not None:
                self._claims[target.slot_id].append(response.response_id)
        
        self._held_by: dict[str, list[str]] = defaultdict(list)
        for slot in self._slots:
            held = self._find_response(slot.linked_response_id)
            if held is not None:
                self._held_by[held.response_id].append(slot.slot_id)
        
        self._check_series()
        for slot in self._slots:
            self._check_slot(slot)
        for response in self._responses:
            self._check_response(response)
        
        return AuditReport(
            findings=sorted(self._findings.values(), key=lambda f: f.sort_key),
            slots_scanned=len(self._slots),
            responses_scanned=len(self._responses),
            consistent_links=self._consistent,
        )
    
    # -----------------------------------------------------------------------
    # Checks
    # -----------------------------------------------------------------------
    
    def _check_series(self) -> None:
        by_series: dict[SeriesKey, list[Slot]] = defaultdict(list)
        for slot in self._slots:
            by_series[slot.series_key].append(slot)
        
        for key, members in by_series.items():
            by_sequence: dict[int, list[str]] = defaultdict(list)
            for slot in members:
                by_sequence[slot.sequence_number].append(slot.slot_id)
            
            if 1 not in by_sequence:
                self._add(Finding(
                    kind=FindingKind.MISSING_ANCHOR,
                    reason=ReasonCode.NO_ANCHOR_SLOT,
                    series_key=key,
                    related_ids=tuple(sorted(s.slot_id for s in members)),
                ))
            
            for sequence, slot_ids in sorted(by_sequence.items()):
                if len(slot_ids) > 1:
                    self._add(Finding(
                        kind=FindingKind.DUPLICATE_SEQUENCE,
                        reason=ReasonCode.SEQUENCE_REUSED,
                        series_key=key,
                        related_ids=tuple(sorted(slot_ids)),
                        sequence_number=sequence,
                    ))
    
    def _check_slot(self, slot: Slot) -> None:
        claimants = self._claims.get(slot.slot_id, [])
        
        if slot.linked_response_id is None:
            # Claimed-but-unlinked slots are reported from the response side
            if slot.is_completed and not claimants:
                self._add(self._slot_finding(
                    FindingKind.ORPHAN_SLOT, ReasonCode.COMPLETED_WITHOUT_RESPONSE, slot
                ))
            return
        
        response = self._find_response(slot.linked_response_id)
        if response is None:
            if claimants:
                self._add(self._slot_finding(
                    FindingKind.MISMATCHED_LINK,
                    ReasonCode.SLOT_RESPONSE_MISSING_BUT_CLAIMED,
                    slot,
                    related_ids=tuple(sorted(claimants)),
                ))
            else:
                reason = (
                    ReasonCode.RESPONSE_MISSING if slot.is_completed
                    else ReasonCode.PENDING_SLOT_DANGLING_RESPONSE
                )
                self._add(self._slot_finding(
                    FindingKind.ORPHAN_SLOT, reason, slot,
                    response_id=slot.linked_response_id,
                ))
            return
        
        if self._points_at(response, slot):
            if slot.is_completed:
                self._consistent += 1
            else:
                self._add(self._slot_finding(
                    FindingKind.MISMATCHED_LINK,
                    ReasonCode.PENDING_SLOT_HOLDS_LINK,
                    slot,
                    response_id=response.response_id,
                ))
            return
        
        self._add(self._slot_finding(
            FindingKind.MISMATCHED_LINK,
            ReasonCode.RESPONSE_POINTS_ELSEWHERE,
            slot,
            response_id=response.response_id,
            related_ids=(response.linked_slot_id,) if response.linked_slot_id else (),
        ))
    
    def _check_response(self, response: Response) -> None:
        if self._held_by.get(response.response_id):
            # Some slot holds this response; the slot side already classified it
            return
        
        target = self._find_slot(response.linked_slot_id)
        if target is None:
            reason = (
                ReasonCode.RESPONSE_UNLINKED if response.linked_slot_id is None
                else ReasonCode.SLOT_MISSING
            )
            self._add(Finding(
                kind=FindingKind.ORPHAN_RESPONSE,
                reason=reason,
                series_key=response.series_key,
                response_id=response.response_id,
                related_ids=(response.linked_slot_id,) if response.linked_slot_id else (),
                sequence_number=response.sequence_number,
            ))
            return
        
        if target.linked_response_id == response.response_id:
            # Pair crosses the audit scope but agrees
            return
        
        if target.linked_response_id is None:
            claimants = self._claims.get(target.slot_id, [])
            if len(claimants) > 1:
                self._add(self._slot_finding(
                    FindingKind.MISMATCHED_LINK,
                    ReasonCode.SLOT_CLAIMED_BY_MULTIPLE_RESPONSES,
                    target,
                    related_ids=tuple(sorted(claimants)),
                ))
            else:
                self._add(self._slot_finding(
                    FindingKind.MISMATCHED_LINK,
                    ReasonCode.SLOT_MISSING_BACK_REFERENCE,
                    target,
                    response_id=response.response_id,
                ))
            return
        
        if self._find_response(target.linked_response_id) is None:
            # Target's own reference dangles; reported from the slot side
            return
        
        self._add(Finding(
            kind=FindingKind.MISMATCHED_LINK,
            reason=ReasonCode.DUPLICATE_CLAIM,
            series_key=response.series_key,
            slot_id=target.slot_id,
            response_id=response.response_id,
            related_ids=(target.linked_response_id,),
            sequence_number=response.sequence_number,
        ))
    
    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------
    
    def _add(self, finding: Finding) -> None:
        self._findings.setdefault(finding.finding_id, finding)
    
    @staticmethod
    def _slot_finding(
        kind: FindingKind,
        reason: ReasonCode,
        slot: Slot,
        response_id: Optional[str] = None,
        related_ids: tuple[str, ...] = (),
    ) -> Finding:
        return Finding(
            kind=kind,
            reason=reason,
            series_key=slot.series_key,
            slot_id=slot.slot_id,
            response_id=response_id,
            related_ids=related_ids,
            sequence_number=slot.sequence_number,
        )
    
    def _points_at(self, response: Response, slot: Slot) -> bool:
        target = self._find_slot(response.linked_slot_id)
        return target is not None and target.slot_id == slot.slot_id
    
    def _find_slot(self, ref: Optional[str]) -> Optional[Slot]:
        if ref is None:
            return None
        if ref in self._slot_index:
            return self._slot_index[ref]
        if not self._scoped:
            return None
        if ref not in self._outside_slots:
            self._outside_slots[ref] = get_slot(self._store, ref)
        return self._outside_slots[ref]
    
    def _find_response(self, ref: Optional[str]) -> Optional[Response]:
        if ref is None:
            return None
        if ref in self._response_index:
            return self._response_index[ref]
        if not self._scoped:
            return None
        if ref not in self._outside_responses:
            self._outside_responses[ref] = get_response(self._store, ref)
        return self._outside_responses[ref]
