"""
Repository pattern implementations for Snowflake.

Repositories translate between domain models and database representations.
"""

from .storages import StorageNotFoundError, StorageRepository

__all__ = ["StorageNotFoundError", "StorageRepository"]
