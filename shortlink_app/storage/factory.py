"""
Factory for creating storage instances.
Simple, clean factory with singleton caching.
"""

from enum import Enum
from .strategies import StorageStrategy, SQLAlchemyStorage, InMemoryStorage
from shortlink_app.logging_config import get_logger

logger = get_logger(__name__)


class StorageBackend(Enum):
    """Available storage backends"""
    SQLALCHEMY = "sqlalchemy"
    MEMORY = "memory"


class StorageFactory:
    """
    Simple factory for creating storage instances.

    Gets configuration from settings (not passed as parameters).
    """

    _instance: StorageStrategy = None  # Single cached instance

    @classmethod
    def create(cls, backend: StorageBackend) -> StorageStrategy:
        """
        Create or return cached storage instance.

        Args:
            backend: Type of storage backend (from enum)

        Returns:
            Singleton storage instance
        """
        if cls._instance is not None:
            return cls._instance

        if backend == StorageBackend.SQLALCHEMY:
            from shortlink_app.database.connection import engine
            cls._instance = SQLAlchemyStorage(engine)
            logger.info(f"SQLAlchemy storage initialized ({engine.url.get_backend_name()})")

        elif backend == StorageBackend.MEMORY:
            cls._instance = InMemoryStorage()
            logger.info("In-memory storage initialized")

        else:
            raise ValueError(f"Unknown storage backend: {backend}")

        return cls._instance

    @classmethod
    def clear_instance(cls):
        """Clear cached instance (for testing)"""
        cls._instance = None
