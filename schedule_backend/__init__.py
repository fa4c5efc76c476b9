"""
Backend package for the schedule manager API.

This package provides a FastAPI application over a SQL database, an
expiring key-value store and file storage, with in-memory implementations
of each for tests and local runs.
"""
