"""Store selection from settings."""

import logging
from functools import lru_cache

from src.core.config import get_settings
from src.repositories.memory import InMemoryStore
from src.repositories.supabase_store import SupabaseStore

logger = logging.getLogger(__name__)


@lru_cache
def get_store() -> SupabaseStore | InMemoryStore:
    """Get the cached store for the configured backend.

    Returns:
        SupabaseStore | InMemoryStore: Implements every repository protocol.

    Note:
        Call get_store.cache_clear() after changing STORAGE_BACKEND.
    """
    settings = get_settings()
    if settings.storage_backend == "memory":
        logger.warning("Using in-memory store; state is lost on restart and not shared between instances")
        return InMemoryStore()
    return SupabaseStore()
