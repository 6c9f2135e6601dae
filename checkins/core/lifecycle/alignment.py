"""
Schedule alignment.

Shifts a whole series by a constant number of days so that its anchor
lands on a reference due date: another client's slot 1, or a fixed date
at the configured due time. Completed history is never moved.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from .documents import load_series
from .errors import SlotNotFound, WriteError
from .models import (
    AlignmentReference,
    AlignSummary,
    ChunkFailure,
    LifecycleConfig,
    SeriesKey,
    SkippedSlot,
    Slot,
)
from .store import DocumentStore, SLOTS, WriteOp, chunked, with_write_retry


logger = logging.getLogger(__name__)


class ScheduleAligner:
    """Moves a series onto a reference date in size-limited chunks."""
    
    def __init__(self, store: DocumentStore, config: LifecycleConfig) -> None:
        self._store = store
        self._config = config
    
    def reference_due_at(self, key: SeriesKey, reference: AlignmentReference) -> datetime:
        """Resolve a reference to the due date slot 1 should end up on."""
        if reference.target_date is not None:
            return datetime.combine(reference.target_date, self._config.due_time)
        
        reference_key = SeriesKey(
            reference.reference_client_id,
            reference.reference_form_id or key.form_id,
        )
        anchor = _anchor(load_series(self._store, reference_key))
        if anchor is None:
            raise SlotNotFound(f"Reference series {reference_key} has no slot 1")
        return anchor.due_at
    
    def align(self, key: SeriesKey, reference: AlignmentReference) -> AlignSummary:
        """
        Shift every slot of the series by the calendar days between the
        anchor's due date and the reference's.
        
        Slot 1 always moves. Later slots that are completed with a linked
        response keep their dates and are reported as skipped. Everything
        else, slot 1 included, moves by the offset with its time normalised
        to the configured due time, so moved slots keep whole-period spacing
        whatever time of day the reference carries. A failed chunk is
        reported and the next chunk still runs.
        """
        reference_due_at = self.reference_due_at(key, reference)
        slots = load_series(self._store, key)
        anchor = _anchor(slots)
        if anchor is None:
            raise SlotNotFound(f"Series {key} has no slot 1")
        
        offset_days = (reference_due_at.date() - anchor.due_at.date()).days
        summary = AlignSummary(
            series_key=key,
            offset_days=offset_days,
            reference_due_at=reference_due_at,
            previous_anchor_due_at=anchor.due_at,
            new_anchor_due_at=anchor.due_at,
            total_slots=len(slots),
        )
        
        if offset_days == 0:
            logger.info(
                "Series already aligned",
                extra={"series": str(key), "anchor_due_at": anchor.due_at.isoformat()}
            )
            return summary
        
        ops: list[WriteOp] = []
        for slot in slots:
            if not slot.is_anchor and slot.has_protected_history:
                summary.skipped.append(SkippedSlot(
                    slot_id=slot.slot_id,
                    sequence_number=slot.sequence_number,
                    reason="completed with a linked response",
                ))
                continue
            
            ops.append(WriteOp(SLOTS, slot.slot_id, self._shifted_fields(slot, offset_days)))
        
        self._write_chunks(ops, summary)
        if anchor.slot_id in summary.updated_slot_ids:
            summary.new_anchor_due_at = self._shifted_due_at(anchor, offset_days)
        
        logger.info(
            "Series aligned",
            extra={
                "series": str(key),
                "offset_days": offset_days,
                "updated": len(summary.updated_slot_ids),
                "skipped": len(summary.skipped),
                "failed_chunks": len(summary.chunk_failures),
            }
        )
        return summary
    
    def _shifted_due_at(self, slot: Slot, offset_days: int) -> datetime:
        return datetime.combine(
            slot.due_at.date() + timedelta(days=offset_days), self._config.due_time
        )
    
    def _shifted_fields(self, slot: Slot, offset_days: int) -> dict[str, Any]:
        delta = timedelta(days=offset_days)
        return {
            "dueAt": self._shifted_due_at(slot, offset_days).isoformat(),
            "checkInWindowStart": _shift_iso(slot.check_in_window_start, delta),
            "checkInWindowEnd": _shift_iso(slot.check_in_window_end, delta),
        }
    
    def _write_chunks(self, ops: list[WriteOp], summary: AlignSummary) -> None:
        size = max(1, min(self._config.batch_size, self._store.max_batch_size))
        
        for index, chunk in enumerate(chunked(ops, size)):
            slot_ids = [op.doc_id for op in chunk]
            try:
                with_write_retry(
                    lambda: self._store.batch_write(chunk), self._config.write_retry_attempts
                )
            except WriteError as e:
                logger.error(
                    "Alignment chunk failed",
                    extra={"series": str(summary.series_key), "chunk": index, "error": str(e)}
                )
                summary.chunk_failures.append(ChunkFailure(index, slot_ids, str(e)))
                continue
            summary.updated_slot_ids.extend(slot_ids)


def _anchor(slots: list[Slot]) -> Optional[Slot]:
    for slot in slots:
        if slot.is_anchor:
            return slot
    return None


def _shift_iso(value: Optional[datetime], delta: timedelta) -> Optional[str]:
    return (value + delta).isoformat() if value is not None else None
