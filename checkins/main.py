"""
FastAPI application entry point.

Creates and configures the FastAPI application through an application
factory so tests can build instances with overridden dependencies.

For local development:
    SNOWFLAKE_MOCK_MODE=true uvicorn checkins.main:app --reload

For production:
    gunicorn checkins.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import health, maintenance, responses, series
from .config.settings import get_settings

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=get_settings().log_level.upper(),
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration on startup and log shutdown."""
    settings = get_settings()
    
    logger.info(
        "Check-in API starting",
        extra={
            "version": settings.api_version,
            "mock_mode": settings.snowflake_mock_mode,
        }
    )
    
    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )
    
    # Fail fast on a malformed schedule configuration
    settings.lifecycle_config()
    
    yield
    
    logger.info("Check-in API shutting down")


def create_app() -> FastAPI:
    """
    Application factory.
    
    Called once at startup in production, and per test where a fresh app
    with overridden dependencies is needed.
    """
    settings = get_settings()
    
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Recurring check-in lifecycle for coaching programs.
        
        ## Features
        
        - Generate check-in schedules for enrolled clients
        - Link each submitted response to exactly one slot
        - Audit and repair broken slot/response links
        - Realign a client's schedule to a reference date
        
        ## Authentication
        
        All endpoints except health checks require an API key in the `X-API-Key` header.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )
    
    app.include_router(
        series.router,
        prefix="/api/v1/series",
        tags=["Series"],
    )
    
    app.include_router(
        responses.router,
        prefix="/api/v1/responses",
        tags=["Responses"],
    )
    
    app.include_router(
        maintenance.router,
        prefix="/api/v1/maintenance",
        tags=["Maintenance"],
    )
    
    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "message": "Check-in Lifecycle API",
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }
    
    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """
        Catch-all exception handler.
        
        Logs the full error server-side but returns a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )
        
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error. Please contact support if this persists."
            }
        )
    
    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )
    
    return app


# Create the application instance
# This is what uvicorn/gunicorn will import
app = create_app()


if __name__ == "__main__":
    import uvicorn
    
    settings = get_settings()
    
    uvicorn.run(
        "checkins.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
