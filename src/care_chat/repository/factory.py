"""Repository factory."""

import logging
from typing import Optional, Tuple

from ..config.settings import Settings
from .base import ResponseRepository, SessionStore
from .local import LocalResponseRepository, LocalSessionStore
from .supabase import SupabaseClientManager, SupabaseResponseRepository, SupabaseSessionStore

logger = logging.getLogger(__name__)


def create_client_manager(settings: Settings) -> Optional[SupabaseClientManager]:
    """Supabase client manager, or None when Supabase is not configured."""
    if not settings.supabase.is_configured:
        return None
    return SupabaseClientManager(settings.supabase.url, settings.supabase.key)


def create_repositories(
    settings: Settings,
    client_manager: Optional[SupabaseClientManager] = None,
) -> Tuple[ResponseRepository, SessionStore]:
    """Create the storage backend selected by ``settings.storage.backend``.

    Args:
        settings: Application settings
        client_manager: Shared Supabase client manager, created if omitted

    Returns:
        Tuple of (response_repo, session_store)
    """
    if settings.storage.backend == "supabase":
        client_manager = client_manager or create_client_manager(settings)
        if client_manager is not None:
            return (
                SupabaseResponseRepository(client_manager),
                SupabaseSessionStore(client_manager),
            )
        logger.warning(
            "STORAGE_BACKEND=supabase but SUPABASE_URL/SUPABASE_KEY are not set, "
            "falling back to local storage"
        )

    data_path = settings.storage.data_path
    return LocalResponseRepository(data_path), LocalSessionStore(data_path)
