"""
Unit tests for the consistency auditor.

Each test seeds one broken state the way a migration might leave it
and checks the auditor classifies it without writing anything.
"""

import pytest

from checkins.core.lifecycle import (
    ConsistencyAuditor,
    FindingKind,
    ReasonCode,
    SeriesKey,
    merge_reports,
)
from checkins.core.lifecycle.store import RESPONSES, SLOTS
from checkins.infrastructure.documents import InMemoryDocumentStore


@pytest.fixture
def auditor(store) -> ConsistencyAuditor:
    return ConsistencyAuditor(store)


def reasons(report) -> list[tuple[FindingKind, ReasonCode]]:
    return [(f.kind, f.reason) for f in report.findings]


class TestCleanData:
    """Consistent data produces no findings."""
    
    def test_consistent_series_is_clean(self, auditor, seed_linked, seed_slot):
        seed_linked("slot-1", "resp-1")
        seed_slot("slot-2", sequence_number=2)
        
        report = auditor.audit("client-1")
        
        assert report.is_clean
        assert report.slots_scanned == 2
        assert report.responses_scanned == 1
        assert report.consistent_links == 1
    
    def test_audit_does_not_write(self, auditor, store, seed_slot, seed_response):
        seed_slot("slot-1", status="completed")
        seed_response("resp-1", "missing")
        before = store.write_calls
        
        auditor.audit()
        
        assert store.write_calls == before


class TestSeriesStructure:
    """Problems with the shape of a series."""
    
    def test_missing_anchor(self, auditor, seed_slot):
        seed_slot("slot-2", sequence_number=2)
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [(FindingKind.MISSING_ANCHOR, ReasonCode.NO_ANCHOR_SLOT)]
        assert report.findings[0].related_ids == ("slot-2",)
    
    def test_duplicate_sequence(self, auditor, seed_slot):
        seed_slot("slot-1")
        seed_slot("slot-2a", sequence_number=2)
        seed_slot("slot-2b", sequence_number=2)
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [(FindingKind.DUPLICATE_SEQUENCE, ReasonCode.SEQUENCE_REUSED)]
        assert report.findings[0].related_ids == ("slot-2a", "slot-2b")
        assert report.findings[0].sequence_number == 2


class TestOrphans:
    """Records whose counterpart is missing."""
    
    def test_completed_slot_without_response(self, auditor, seed_slot):
        seed_slot("slot-1", status="completed")
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [(FindingKind.ORPHAN_SLOT, ReasonCode.COMPLETED_WITHOUT_RESPONSE)]
    
    def test_slot_pointing_at_deleted_response(self, auditor, seed_slot):
        seed_slot("slot-1", status="completed", linked_response_id="gone")
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [(FindingKind.ORPHAN_SLOT, ReasonCode.RESPONSE_MISSING)]
        assert report.findings[0].response_id == "gone"
    
    def test_pending_slot_with_dangling_reference(self, auditor, seed_slot):
        seed_slot("slot-1", linked_response_id="gone")
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [(FindingKind.ORPHAN_SLOT, ReasonCode.PENDING_SLOT_DANGLING_RESPONSE)]
    
    def test_response_pointing_at_missing_slot(self, auditor, seed_slot, seed_response):
        seed_slot("slot-1")
        seed_response("resp-1", "X")
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [(FindingKind.ORPHAN_RESPONSE, ReasonCode.SLOT_MISSING)]
        finding = report.findings[0]
        assert finding.response_id == "resp-1"
        assert finding.related_ids == ("X",)
    
    def test_response_without_slot_reference(self, auditor, seed_slot, seed_response):
        seed_slot("slot-1")
        seed_response("resp-1", None)
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [(FindingKind.ORPHAN_RESPONSE, ReasonCode.RESPONSE_UNLINKED)]


class TestMismatches:
    """Both records exist but disagree."""
    
    def test_pending_slot_holding_agreeing_response(self, auditor, seed_slot, seed_response):
        seed_slot("slot-1", linked_response_id="resp-1")
        seed_response("resp-1", "slot-1")
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [(FindingKind.MISMATCHED_LINK, ReasonCode.PENDING_SLOT_HOLDS_LINK)]
    
    def test_response_points_at_other_slot(self, auditor, seed_linked, seed_slot):
        """Two slots hold one response; only one is pointed back at."""
        seed_linked("slot-1", "resp-1")
        seed_slot("slot-2", sequence_number=2, status="completed", linked_response_id="resp-1")
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [(FindingKind.MISMATCHED_LINK, ReasonCode.RESPONSE_POINTS_ELSEWHERE)]
        finding = report.findings[0]
        assert finding.slot_id == "slot-2"
        assert finding.related_ids == ("slot-1",)
    
    def test_slot_missing_back_reference(self, auditor, seed_slot, seed_response):
        seed_slot("slot-1", status="completed")
        seed_response("resp-1", "slot-1")
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [(FindingKind.MISMATCHED_LINK, ReasonCode.SLOT_MISSING_BACK_REFERENCE)]
        assert report.findings[0].response_id == "resp-1"
    
    def test_slot_claimed_by_several_responses(self, auditor, seed_slot, seed_response):
        seed_slot("slot-1")
        seed_response("resp-a", "slot-1")
        seed_response("resp-b", "slot-1")
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [
            (FindingKind.MISMATCHED_LINK, ReasonCode.SLOT_CLAIMED_BY_MULTIPLE_RESPONSES)
        ]
        assert report.findings[0].related_ids == ("resp-a", "resp-b")
    
    def test_duplicate_claim_on_completed_slot(self, auditor, seed_linked, seed_response):
        seed_linked("slot-1", "resp-1")
        seed_response("resp-dup", "slot-1")
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [(FindingKind.MISMATCHED_LINK, ReasonCode.DUPLICATE_CLAIM)]
        finding = report.findings[0]
        assert finding.response_id == "resp-dup"
        assert finding.related_ids == ("resp-1",)
    
    def test_slot_response_missing_but_claimed(self, auditor, seed_slot, seed_response):
        seed_slot("slot-1", status="completed", linked_response_id="gone")
        seed_response("resp-1", "slot-1")
        
        report = auditor.audit("client-1")
        
        assert reasons(report) == [
            (FindingKind.MISMATCHED_LINK, ReasonCode.SLOT_RESPONSE_MISSING_BUT_CLAIMED)
        ]


class TestScopeAndDeterminism:
    """Scoping, ordering and merging of reports."""
    
    def test_scope_limits_to_client(self, auditor, seed_slot):
        seed_slot("slot-1", status="completed")
        seed_slot("other-1", client_id="client-2", status="completed")
        
        report = auditor.audit("client-1")
        
        assert [f.slot_id for f in report.findings] == ["slot-1"]
    
    def test_repeated_audit_is_identical(self, auditor, seed_slot, seed_response):
        seed_slot("slot-1", status="completed")
        seed_slot("slot-2", sequence_number=2, linked_response_id="gone")
        seed_response("resp-1", "X", sequence_number=3)
        
        first = auditor.audit()
        second = auditor.audit()
        
        assert [f.finding_id for f in first] == [f.finding_id for f in second]
        assert len(first) == 3
    
    def test_storage_order_does_not_matter(self):
        """The same documents inserted in opposite orders give the same report."""
        documents = [
            (SLOTS, "slot-b", {"clientId": "c", "formId": "f", "sequenceNumber": 1,
                               "dueAt": "2026-01-05T09:00:00", "status": "completed"}),
            (SLOTS, "slot-a", {"clientId": "c", "formId": "f", "sequenceNumber": 1,
                               "dueAt": "2026-01-05T09:00:00", "status": "pending",
                               "linkedResponseId": "r-9"}),
            (RESPONSES, "r-1", {"clientId": "c", "formId": "f", "linkedSlotId": "nope",
                                "submittedAt": "2026-01-05T08:00:00"}),
        ]
        forward, backward = InMemoryDocumentStore(), InMemoryDocumentStore()
        for collection, doc_id, fields in documents:
            forward.put(collection, doc_id, fields)
        for collection, doc_id, fields in reversed(documents):
            backward.put(collection, doc_id, fields)
        
        first = ConsistencyAuditor(forward).audit()
        second = ConsistencyAuditor(backward).audit()
        
        assert [f.finding_id for f in first] == [f.finding_id for f in second]
        assert first.findings[0].kind == FindingKind.DUPLICATE_SEQUENCE
    
    def test_merge_deduplicates_and_orders(self, auditor, seed_slot):
        seed_slot("slot-1", status="completed")
        seed_slot("other-1", client_id="client-0", status="completed")
        
        merged = merge_reports([auditor.audit("client-1"), auditor.audit("client-0"), auditor.audit("client-1")])
        
        assert [f.series_key for f in merged] == [
            SeriesKey("client-0", "form-1"),
            SeriesKey("client-1", "form-1"),
        ]
