"""Pydantic schemas shared by the task graph engine and its callers."""
