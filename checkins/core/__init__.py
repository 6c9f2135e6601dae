"""
Core business logic for the check-in lifecycle.

This module is framework-agnostic - it doesn't import FastAPI, Snowflake,
or any infrastructure concerns. Storage is reached only through the
DocumentStore protocol, so the lifecycle can be tested against an
in-memory store.
"""
