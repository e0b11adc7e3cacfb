"""Storage backends and the factory that picks one at startup."""

import logging
from typing import Optional

from library_store.config import Settings, settings as default_settings
from library_store.errors import StorageError
from library_store.storage.base import Store
from library_store.storage.memory_store import MemoryStore
from library_store.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

STORAGE_TYPES = ("sqlite", "memory")


def create_store(config: Optional[Settings] = None) -> Store:
    """Build the backend named by ``config.storage_type``.

    When the SQLite database cannot be opened and ``storage_fallback`` is
    set, the failure is logged and an in-memory store is returned instead.
    """
    config = config or default_settings
    storage_type = config.storage_type.lower()
    if storage_type not in STORAGE_TYPES:
        raise ValueError(f"Unknown storage type {config.storage_type!r}; use one of {', '.join(STORAGE_TYPES)}")

    if storage_type == "memory":
        logger.info("Using MemoryStore")
        return MemoryStore()

    try:
        store = SQLiteStore(config.db_path, timeout=config.sqlite_timeout)
    except StorageError as exc:
        if not config.storage_fallback:
            raise
        logger.warning(f"Could not initialise SQLite ({exc}); using MemoryStore as fallback")
        return MemoryStore()
    logger.info(f"Using SQLiteStore: {config.db_path}")
    return store


__all__ = ["Store", "MemoryStore", "SQLiteStore", "create_store", "STORAGE_TYPES"]
