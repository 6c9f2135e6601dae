"""
Infrastructure layer - document store implementations.

Each subdirectory wraps a storage backend:
- documents: In-memory store for local development and tests
- snowflake: Documents persisted as VARIANT rows in Snowflake

Both implement the DocumentStore protocol from the core package.
"""
