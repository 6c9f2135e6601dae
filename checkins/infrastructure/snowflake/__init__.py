"""Snowflake-backed document store."""

from .client import SnowflakeConfig, SnowflakeConnectionError, create_snowflake_connection
from .document_store import SnowflakeDocumentStore

__all__ = [
    "SnowflakeConfig",
    "SnowflakeConnectionError",
    "SnowflakeDocumentStore",
    "create_snowflake_connection",
]
