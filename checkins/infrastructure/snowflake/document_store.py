"""
Snowflake document store.

Every collection lives in one table of (collection, doc_id, data VARIANT)
rows. Queries filter on VARIANT paths. Atomic writes run inside an explicit
transaction, with each precondition checked by the MERGE that writes the row.

Table layout:
    CREATE TABLE CHECKIN_DOCUMENTS (
        collection STRING,
        doc_id STRING,
        data VARIANT,
        updated_at TIMESTAMP_NTZ
    )
"""

import json
import logging
import re
from typing import Any, Optional, Sequence

from ...core.lifecycle.errors import BatchTooLarge, WriteConflict, WriteError
from ...core.lifecycle.store import Document, FieldFilter, WriteOp, preconditions_hold
from .client import SnowflakeConnection

logger = logging.getLogger(__name__)

# Field and table names are interpolated into SQL, so only plain identifiers pass
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


def _load(raw: Any) -> dict[str, Any]:
    """VARIANT columns come back as JSON text."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    return json.loads(raw)


class SnowflakeDocumentStore:
    """
    DocumentStore on a single Snowflake VARIANT table.
    
    One instance wraps one connection; the API creates a store per request.
    """
    
    def __init__(
        self,
        connection: SnowflakeConnection,
        table: str = "CHECKIN_DOCUMENTS",
        max_batch_size: int = 500,
    ) -> None:
        self._conn = connection
        self._table = _identifier(table)
        self.max_batch_size = max_batch_size
    
    def ensure_table(self) -> None:
        cursor = self._conn.cursor()
        try:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    collection STRING NOT NULL,
                    doc_id STRING NOT NULL,
                    data VARIANT,
                    updated_at TIMESTAMP_NTZ
                )
            """)
            self._conn.commit()
        finally:
            cursor.close()
    
    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------
    
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        cursor = self._conn.cursor()
        try:
            return self._get(cursor, collection, doc_id)
        finally:
            cursor.close()
    
    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: Optional[str] = None,
    ) -> list[Document]:
        clauses = ["collection = %s"]
        params: list[Any] = [collection]
        for f in filters:
            path = f'data:"{_identifier(f.field)}"'
            if f.value is None:
                clauses.append(f"({path} IS NULL OR IS_NULL_VALUE({path}))")
            else:
                clauses.append(f"{path} = PARSE_JSON(%s)")
                params.append(json.dumps(f.value))
        
        sql = f"SELECT doc_id, data FROM {self._table} WHERE {' AND '.join(clauses)}"
        if order_by is not None:
            sql += f' ORDER BY data:"{_identifier(order_by)}" NULLS LAST, doc_id'
        
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, tuple(params))
            rows = cursor.fetchall()
        finally:
            cursor.close()
        
        return [Document(row[0], _load(row[1])) for row in rows]
    
    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------
    
    def atomic_write(self, ops: Sequence[WriteOp]) -> None:
        """
        Run every op in one transaction; any failed precondition rolls all back.
        
        Preconditions are part of each MERGE's match condition, so a write
        that lost a race to another transaction changes no row and is
        reported as a conflict instead of overwriting the winner.
        """
        cursor = self._conn.cursor()
        try:
            cursor.execute("BEGIN")
            for op in ops:
                if self._merge(cursor, op) == 0 and op.precondition is not None:
                    raise WriteConflict(f"Precondition failed for {op.collection}/{op.doc_id}")
            cursor.execute("COMMIT")
        except WriteConflict:
            self._rollback(cursor)
            raise
        except Exception as e:
            self._rollback(cursor)
            logger.error(
                "Snowflake write failed",
                extra={"ops": len(ops), "error": str(e)}
            )
            raise WriteError(f"Snowflake write failed: {e}")
        finally:
            cursor.close()
    
    def batch_write(self, ops: Sequence[WriteOp]) -> None:
        if len(ops) > self.max_batch_size:
            raise BatchTooLarge(
                f"Batch of {len(ops)} exceeds the limit of {self.max_batch_size}"
            )
        self.atomic_write(ops)
    
    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------
    
    def _get(self, cursor, collection: str, doc_id: str) -> Optional[Document]:
        cursor.execute(
            f"SELECT data FROM {self._table} WHERE collection = %s AND doc_id = %s",
            (collection, doc_id),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return Document(doc_id, _load(row[0]))
    
    def _merge(self, cursor, op: WriteOp) -> int:
        """Upsert one document and return how many rows changed."""
        params: list[Any] = [op.collection, op.doc_id, json.dumps(op.fields)]
        
        matched = "WHEN MATCHED"
        for name, value in (op.precondition or {}).items():
            path = f'target.data:"{_identifier(name)}"'
            if value is None:
                matched += f" AND ({path} IS NULL OR IS_NULL_VALUE({path}))"
            else:
                matched += f" AND {path} = PARSE_JSON(%s)"
                params.append(json.dumps(value))
        
        if op.merge:
            data = "COALESCE(target.data::OBJECT, OBJECT_CONSTRUCT())"
            for name in op.fields:
                key = _identifier(name)
                data = f"OBJECT_INSERT({data}, '{key}', source.data:\"{key}\", TRUE)"
        else:
            data = "source.data"
        
        sql = f"""
            MERGE INTO {self._table} AS target
            USING (SELECT %s AS collection, %s AS doc_id, PARSE_JSON(%s) AS data) AS source
            ON target.collection = source.collection AND target.doc_id = source.doc_id
            {matched} THEN UPDATE SET
                data = {data},
                updated_at = CURRENT_TIMESTAMP()
        """
        # A missing document only satisfies preconditions that expect nothing
        if op.precondition is None or preconditions_hold(None, op.precondition):
            sql += """
            WHEN NOT MATCHED THEN INSERT (collection, doc_id, data, updated_at)
            VALUES (source.collection, source.doc_id, source.data, CURRENT_TIMESTAMP())
            """
        
        cursor.execute(sql, tuple(params))
        return cursor.rowcount or 0
    
    def _rollback(self, cursor) -> None:
        try:
            cursor.execute("ROLLBACK")
        except Exception as e:
            logger.warning("Rollback failed", extra={"error": str(e)})
