"""
In-memory document store.

Backs mock mode and the test suite. Documents live in a dict per
collection and every read hands out copies, so callers can never mutate
stored state behind the store's back.

Not suitable for production, but perfect for:
- Local development
- Unit tests
- Replaying a migration snapshot to preview a repair
"""

import copy
import logging
import threading
from typing import Any, Optional, Sequence

from ...core.lifecycle.errors import BatchTooLarge, IndexUnavailable, WriteConflict, WriteError
from ...core.lifecycle.store import (
    Document,
    FieldFilter,
    WriteOp,
    preconditions_hold,
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore:
    """
    DocumentStore kept in process memory.
    
    require_index_for_ordering makes ordered queries raise
    IndexUnavailable, imitating a backend without a composite index.
    fail_next_writes makes the next N writes raise WriteError, for
    exercising retry and chunk-failure paths.
    """
    
    def __init__(
        self,
        max_batch_size: int = 500,
        require_index_for_ordering: bool = False,
    ) -> None:
        self.max_batch_size = max_batch_size
        self.require_index_for_ordering = require_index_for_ordering
        self.fail_next_writes = 0
        self.write_calls = 0
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.RLock()
        
        logger.info("Initialized in-memory document store")
    
    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------
    
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            fields = self._collections.get(collection, {}).get(doc_id)
            if fields is None:
                return None
            return Document(doc_id, copy.deepcopy(fields))
    
    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: Optional[str] = None,
    ) -> list[Document]:
        if order_by is not None and self.require_index_for_ordering:
            raise IndexUnavailable(f"No index on {collection}.{order_by}")
        
        with self._lock:
            documents = [
                Document(doc_id, copy.deepcopy(fields))
                for doc_id, fields in self._collections.get(collection, {}).items()
                if all(fields.get(f.field) == f.value for f in filters)
            ]
        
        if order_by is not None:
            documents.sort(key=lambda d: (d.fields.get(order_by) is None, d.fields.get(order_by) or 0, d.id))
        return documents
    
    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------
    
    def atomic_write(self, ops: Sequence[WriteOp]) -> None:
        """Check every precondition first, then apply every op."""
        with self._lock:
            self._before_write()
            for op in ops:
                if op.precondition is None:
                    continue
                current = self._collections.get(op.collection, {}).get(op.doc_id)
                if not preconditions_hold(current, op.precondition):
                    logger.debug(
                        "Precondition failed",
                        extra={"collection": op.collection, "doc_id": op.doc_id}
                    )
                    raise WriteConflict(
                        f"Precondition failed for {op.collection}/{op.doc_id}"
                    )
            for op in ops:
                self._apply(op)
    
    def batch_write(self, ops: Sequence[WriteOp]) -> None:
        if len(ops) > self.max_batch_size:
            raise BatchTooLarge(
                f"Batch of {len(ops)} exceeds the limit of {self.max_batch_size}"
            )
        self.atomic_write(ops)
    
    def _before_write(self) -> None:
        self.write_calls += 1
        if self.fail_next_writes > 0:
            self.fail_next_writes -= 1
            raise WriteError("Simulated transient write failure")
    
    def _apply(self, op: WriteOp) -> None:
        collection = self._collections.setdefault(op.collection, {})
        fields = copy.deepcopy(op.fields)
        if op.merge and op.doc_id in collection:
            collection[op.doc_id].update(fields)
        else:
            collection[op.doc_id] = fields
    
    # Helper methods for testing
    def put(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Store a document as-is, bypassing preconditions (for test setup)."""
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(fields)
    
    def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document (for simulating migration damage in tests)."""
        with self._lock:
            self._collections.get(collection, {}).pop(doc_id, None)
    
    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._collections.get(collection, {}))
    
    def clear(self) -> None:
        with self._lock:
            self._collections.clear()
