"""
Storage contract for the lifecycle.

The core never talks to a database directly. It asks a DocumentStore for
documents by id or by equality filters, and writes through either an
all-or-nothing atomic write or a size-limited batch write.

Using a protocol means tests can run the full lifecycle against the
in-memory store while production uses Snowflake.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Optional, Protocol, Sequence, TypeVar

from .errors import BatchTooLarge, IndexUnavailable, WriteConflict, WriteError


logger = logging.getLogger(__name__)

SLOTS = "check_in_slots"
RESPONSES = "check_in_responses"
REPAIR_LOG = "repair_log"

# Field holding pre-migration identifiers some references still use
LEGACY_ID_FIELD = "legacyId"

T = TypeVar("T")


@dataclass(frozen=True)
class FieldFilter:
    """Equality filter on one document field."""
    field: str
    value: Any


@dataclass
class Document:
    """A stored document: its id plus its fields."""
    id: str
    fields: dict[str, Any]


@dataclass
class WriteOp:
    """
    One document write.
    
    merge=True updates only the given fields; merge=False replaces the
    document. A precondition maps field names to the value they must
    currently hold (None meaning absent or null); any mismatch aborts the
    whole atomic write with WriteConflict.
    """
    collection: str
    doc_id: str
    fields: dict[str, Any]
    merge: bool = True
    precondition: Optional[dict[str, Any]] = field(default=None)


class DocumentStore(Protocol):
    """Interface every storage backend implements."""
    
    max_batch_size: int
    
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Fetch one document by id."""
        ...
    
    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: Optional[str] = None,
    ) -> list[Document]:
        """
        Documents matching every filter.
        
        Raises IndexUnavailable when order_by needs an index the store lacks.
        """
        ...
    
    def atomic_write(self, ops: Sequence[WriteOp]) -> None:
        """Apply all ops or none. Raises WriteConflict or WriteError."""
        ...
    
    def batch_write(self, ops: Sequence[WriteOp]) -> None:
        """Apply up to max_batch_size ops in one call. Raises BatchTooLarge or WriteError."""
        ...


def preconditions_hold(current: Optional[Mapping[str, Any]], expected: Mapping[str, Any]) -> bool:
    """Shared precondition check for store implementations."""
    current = current or {}
    return all(current.get(name) == value for name, value in expected.items())


def series_filters(client_id: str, form_id: Optional[str] = None) -> list[FieldFilter]:
    filters = [FieldFilter("clientId", client_id)]
    if form_id is not None:
        filters.append(FieldFilter("formId", form_id))
    return filters


def query_sorted(
    store: DocumentStore,
    collection: str,
    filters: Sequence[FieldFilter],
    order_by: str,
) -> list[Document]:
    """
    Ordered query that tolerates a missing index.
    
    Falls back to an unordered query sorted in memory. Documents missing
    the sort field go last, ties broken by id so the order is stable.
    """
    try:
        return store.query(collection, filters, order_by=order_by)
    except IndexUnavailable as e:
        logger.info(
            "Index unavailable, sorting in memory",
            extra={"collection": collection, "order_by": order_by, "error": str(e)}
        )
    
    documents = store.query(collection, filters)
    return sorted(
        documents,
        key=lambda d: (d.fields.get(order_by) is None, d.fields.get(order_by) or 0, d.id),
    )


def resolve_reference(store: DocumentStore, collection: str, candidate_id: Optional[str]) -> Optional[Document]:
    """
    Find a referenced document by id, falling back to its legacy id field.
    
    Migrated records can still carry the old identifier, so a reference
    that misses on document id is tried once more by field equality.
    """
    if not candidate_id:
        return None
    
    document = store.get(collection, candidate_id)
    if document is not None:
        return document
    
    matches = store.query(collection, [FieldFilter(LEGACY_ID_FIELD, candidate_id)])
    if len(matches) > 1:
        logger.warning(
            "Legacy id matches several documents",
            extra={"collection": collection, "legacy_id": candidate_id, "count": len(matches)}
        )
        return None
    return matches[0] if matches else None


def with_write_retry(operation: Callable[[], T], attempts: int = 3) -> T:
    """
    Run a write, retrying transient WriteErrors.
    
    WriteConflict is re-raised immediately: the caller has to re-read.
    """
    last_error: Optional[WriteError] = None
    for attempt in range(1, max(attempts, 1) + 1):
        try:
            return operation()
        except (WriteConflict, BatchTooLarge):
            raise
        except WriteError as e:
            last_error = e
            logger.warning(
                "Write failed, retrying",
                extra={"attempt": attempt, "attempts": attempts, "error": str(e)}
            )
    assert last_error is not None
    raise last_error


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    if size < 1:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])
