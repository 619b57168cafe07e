"""
Catalogue storage.

Responsibilities:
- Define the ``CatalogueStore`` interface the search services query.
- Provide an in-memory pandas backend and an asyncpg PostgreSQL backend.
- Hold the process-wide store instance used by the API.
"""
from __future__ import annotations

import logging

from .base import CatalogueStore, PopularView, SearchPlan
from .config import DEFAULT_STORAGE_CONFIG, StorageConfig

logger = logging.getLogger(__name__)

_store: CatalogueStore | None = None


def create_store(config: StorageConfig = DEFAULT_STORAGE_CONFIG) -> CatalogueStore:
    """Build the store selected by ``config.backend``."""
    if config.backend == "postgres":
        from .postgres import PostgresCatalogueStore

        return PostgresCatalogueStore(config)
    if config.backend == "memory":
        from .memory import MemoryCatalogueStore

        return MemoryCatalogueStore.from_csv_dir(config.data_dir, config.memory_log_size)
    raise ValueError(f"Unknown catalogue backend {config.backend!r}")


def get_store() -> CatalogueStore:
    """Return the process-wide store, creating it on first call."""
    global _store
    if _store is None:
        _store = create_store()
        logger.info("Using %s catalogue store", type(_store).__name__)
    return _store


def set_store(store: CatalogueStore | None) -> None:
    """Replace the process-wide store (``None`` resets to lazy creation)."""
    global _store
    _store = store


__all__ = [
    "CatalogueStore",
    "PopularView",
    "SearchPlan",
    "StorageConfig",
    "create_store",
    "get_store",
    "set_store",
]
