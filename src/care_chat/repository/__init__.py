"""Repository layer for data access."""

from .base import RepositoryError, ResponseRepository, SessionStore, session_key
from .factory import create_client_manager, create_repositories

__all__ = [
    "RepositoryError",
    "ResponseRepository",
    "SessionStore",
    "create_client_manager",
    "create_repositories",
    "session_key",
]
