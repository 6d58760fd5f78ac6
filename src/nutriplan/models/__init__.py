"""Pydantic models for users, notifications and practice records."""
