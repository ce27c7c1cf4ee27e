"""Pydantic models shared across pipeline stage boundaries."""
