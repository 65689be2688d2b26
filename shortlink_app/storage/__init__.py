"""
Storage module for links, click events and analytics snapshots.

This module implements the Strategy Pattern for pluggable persistence.
Services receive a StorageStrategy instead of a global connection.
"""

from .strategies import StorageStrategy, SQLAlchemyStorage, InMemoryStorage
from .factory import StorageFactory, StorageBackend

__all__ = [
    "StorageStrategy",
    "SQLAlchemyStorage",
    "InMemoryStorage",
    "StorageFactory",
    "StorageBackend",
]
