"""
FastAPI dependency injection.

Dependencies provide the document store, the lifecycle service and
configuration to route handlers. Routes never build their own store, so
tests can override get_document_store with an in-memory one.

Each dependency is a function that FastAPI calls when needed.
"""

import logging
from typing import Annotated, Generator, Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..core.lifecycle import CheckInLifecycle, DocumentStore
from ..infrastructure.documents import InMemoryDocumentStore
from ..infrastructure.snowflake import (
    SnowflakeConfig,
    SnowflakeDocumentStore,
    create_snowflake_connection,
)

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Global mock store (shared across requests so data persists in mock mode)
_mock_document_store: Optional[InMemoryDocumentStore] = None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate API key from request header.
    
    Raises 403 if key is invalid or missing.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )
    
    if api_key not in settings.api_keys_list:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:8] if api_key else ""}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )
    
    return api_key


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

def snowflake_config_from(settings: Settings) -> SnowflakeConfig:
    return SnowflakeConfig(
        account=settings.snowflake_account,
        user=settings.snowflake_user,
        password=settings.snowflake_password or None,
        private_key_path=settings.snowflake_private_key_path,
        private_key_base64=settings.snowflake_private_key_base64,
        database=settings.snowflake_database,
        schema=settings.snowflake_schema,
        warehouse=settings.snowflake_warehouse,
        role=settings.snowflake_role,
    )


def get_document_store(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Generator[DocumentStore, None, None]:
    """
    Provide a DocumentStore for the request.
    
    This is a generator so the Snowflake connection is closed after the
    request. In mock mode the same in-memory store is reused across
    requests so that data persists during the session.
    """
    global _mock_document_store
    
    if settings.snowflake_mock_mode:
        if _mock_document_store is None:
            _mock_document_store = InMemoryDocumentStore(max_batch_size=settings.batch_write_limit)
            logger.info("Created shared in-memory document store")
        yield _mock_document_store
    else:
        with create_snowflake_connection(snowflake_config_from(settings)) as conn:
            store = SnowflakeDocumentStore(
                conn,
                table=settings.snowflake_documents_table,
                max_batch_size=settings.batch_write_limit,
            )
            logger.debug("Created SnowflakeDocumentStore")
            yield store


def get_lifecycle(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[DocumentStore, Depends(get_document_store)],
) -> CheckInLifecycle:
    """
    Provide the lifecycle service bound to this request's store.
    
    Stateless apart from the store, so one instance per request is fine.
    """
    return CheckInLifecycle(store, settings.lifecycle_config())


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
DocumentStoreDep = Annotated[DocumentStore, Depends(get_document_store)]
LifecycleDep = Annotated[CheckInLifecycle, Depends(get_lifecycle)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
