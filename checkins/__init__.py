"""
Check-in lifecycle service for a coaching platform.

This package contains the recurring check-in subsystem:
- core: Framework-agnostic schedule, linking, audit, repair and alignment logic
- infrastructure: Document store adapters (Snowflake and in-memory)
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
