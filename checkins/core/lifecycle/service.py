"""
Check-in lifecycle service.

Single entry point used by the API routes and the operator CLI. Wires the
generator, resolver, auditor, repairer and aligner to one DocumentStore
and one LifecycleConfig.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, TypeVar

from .alignment import ScheduleAligner
from .audit import ConsistencyAuditor, merge_reports
from .documents import load_responses, load_series, load_slots, slot_fields
from .errors import InvalidInput, LifecycleError, SlotNotFound
from .linking import LinkResolver, SubmissionPayload
from .models import (
    AlignmentReference,
    AlignSummary,
    AuditReport,
    BulkAlignSummary,
    EnrollmentParams,
    LifecycleConfig,
    LinkResult,
    RepairSummary,
    SeriesKey,
    Slot,
)
from .repair import LinkRepairer
from .schedule import ScheduleGenerator
from .store import DocumentStore, SLOTS, WriteOp, chunked, with_write_retry


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CheckInLifecycle:
    """
    Facade over the lifecycle components.
    
    Example:
        lifecycle = CheckInLifecycle(store, settings.lifecycle_config())
        anchor = lifecycle.create_series(EnrollmentParams("c1", "f1", "coach"))
        lifecycle.submit_response("c1", "f1", SubmissionPayload(score=7), sequence_number=1)
    """
    
    def __init__(
        self,
        store: DocumentStore,
        config: Optional[LifecycleConfig] = None,
        generator: Optional[ScheduleGenerator] = None,
    ) -> None:
        self.store = store
        self.config = config or LifecycleConfig()
        self.generator = generator or ScheduleGenerator(self.config)
        self.resolver = LinkResolver(store, self.config.write_retry_attempts)
        self.auditor = ConsistencyAuditor(store)
        self.repairer = LinkRepairer(store, self.config)
        self.aligner = ScheduleAligner(store, self.config)
    
    # -----------------------------------------------------------------------
    # Schedule
    # -----------------------------------------------------------------------
    
    def create_series(self, params: EnrollmentParams, precreate: bool = False) -> Slot:
        """
        Create slot 1 of a new series, or every planned slot when precreate is set.
        
        Input is validated before anything is written. Refuses a series that
        already has slots so a double enrollment cannot reuse sequences.
        """
        slots = self.generator.generate_series(params) if precreate else [self.generator.first_slot(params)]
        anchor = slots[0]
        
        if load_series(self.store, anchor.series_key):
            raise InvalidInput(f"Series {anchor.series_key} already exists")
        
        self._write_slots(slots)
        logger.info(
            "Created series",
            extra={
                "series": str(anchor.series_key),
                "slots_written": len(slots),
                "total_slots": anchor.total_slots_planned,
                "frequency": anchor.frequency.value,
                "first_due_at": anchor.due_at.isoformat(),
            }
        )
        return anchor
    
    def advance_series(self, key: SeriesKey) -> Slot:
        """Create the next slot after the highest existing sequence."""
        slots = self.list_series(key)
        anchor = next((s for s in slots if s.is_anchor), None)
        if anchor is None:
            raise SlotNotFound(f"Series {key} has no slot 1")
        
        next_sequence = max(s.sequence_number for s in slots) + 1
        if next_sequence > anchor.total_slots_planned:
            raise InvalidInput(
                f"Series {key} already has all {anchor.total_slots_planned} planned slots"
            )
        
        slot = self.generator.slot_for(anchor, next_sequence)
        self._write_slots([slot])
        logger.info(
            "Advanced series",
            extra={
                "series": str(key),
                "sequence_number": next_sequence,
                "due_at": slot.due_at.isoformat(),
            }
        )
        return slot
    
    def list_series(self, key: SeriesKey) -> list[Slot]:
        return load_series(self.store, key)
    
    # -----------------------------------------------------------------------
    # Responses
    # -----------------------------------------------------------------------
    
    def submit_response(
        self,
        client_id: str,
        form_id: str,
        payload: SubmissionPayload,
        slot_id: Optional[str] = None,
        sequence_number: Optional[int] = None,
    ) -> LinkResult:
        return self.resolver.submit(client_id, form_id, payload, slot_id, sequence_number)
    
    def reassign_response(self, client_id: str, response_id: str, target_sequence: int) -> LinkResult:
        return self.resolver.reassign(client_id, response_id, target_sequence)
    
    # -----------------------------------------------------------------------
    # Audit and repair
    # -----------------------------------------------------------------------
    
    def audit(self, client_id: Optional[str] = None) -> AuditReport:
        """Audit one client; with no client, audit every client in parallel."""
        if client_id is not None:
            return self.auditor.audit(client_id)
        
        reports = self._per_client(self.auditor.audit)
        return merge_reports(reports)
    
    def repair(self, client_id: Optional[str] = None, dry_run: bool = True) -> RepairSummary:
        """
        Audit then repair one client, or every client in parallel.
        
        Clients share no data, so each worker owns its client's series and
        runs them sequentially.
        """
        if client_id is not None:
            return self._repair_client(client_id, dry_run)
        
        summaries = self._per_client(lambda c: self._repair_client(c, dry_run))
        combined = RepairSummary(client_id=None, dry_run=dry_run)
        for summary in summaries:
            combined.actions.extend(summary.actions)
        return combined
    
    def _repair_client(self, client_id: str, dry_run: bool) -> RepairSummary:
        report = self.auditor.audit(client_id)
        return self.repairer.repair(report, dry_run=dry_run)
    
    # -----------------------------------------------------------------------
    # Alignment
    # -----------------------------------------------------------------------
    
    def align(self, client_id: str, form_id: str, reference: AlignmentReference) -> AlignSummary:
        return self.aligner.align(SeriesKey(client_id, form_id), reference)
    
    def align_bulk(
        self,
        client_ids: list[str],
        form_id: str,
        reference: AlignmentReference,
    ) -> BulkAlignSummary:
        """Align several clients to one reference, one series at a time."""
        result = BulkAlignSummary()
        for client_id in dict.fromkeys(client_ids):
            if client_id == reference.reference_client_id:
                continue
            try:
                result.summaries.append(self.align(client_id, form_id, reference))
            except LifecycleError as e:
                logger.warning(
                    "Bulk alignment skipped client",
                    extra={"client_id": client_id, "form_id": form_id, "error": str(e)}
                )
                result.failures[client_id] = str(e)
        
        logger.info(
            "Bulk alignment complete",
            extra={
                "form_id": form_id,
                "aligned": len(result.summaries),
                "failed": len(result.failures),
            }
        )
        return result
    
    # -----------------------------------------------------------------------
    # Clients and writes
    # -----------------------------------------------------------------------
    
    def client_ids(self) -> list[str]:
        """Every client with at least one slot or response, sorted."""
        ids = {s.client_id for s in load_slots(self.store)}
        ids.update(r.client_id for r in load_responses(self.store))
        return sorted(ids)
    
    def _per_client(self, operation: Callable[[str], T]) -> list[T]:
        clients = self.client_ids()
        logger.info(
            "Running system-wide pass",
            extra={"clients": len(clients), "workers": self.config.max_workers}
        )
        # map() keeps input order, so results come back in client order
        with ThreadPoolExecutor(max_workers=max(1, self.config.max_workers)) as pool:
            return list(pool.map(operation, clients))
    
    def _write_slots(self, slots: list[Slot]) -> None:
        ops = [WriteOp(SLOTS, s.slot_id, slot_fields(s), merge=False) for s in slots]
        size = max(1, min(self.config.batch_size, self.store.max_batch_size))
        for chunk in chunked(ops, size):
            with_write_retry(lambda: self.store.batch_write(chunk), self.config.write_retry_attempts)
