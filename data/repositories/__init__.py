"""Repository pattern implementation for data access."""

from .base_repository import (
    BaseSyncRepository,
    RepositoryError,
    DataValidationError,
    DataNotFoundError,
)
from .memory_repository import InMemorySyncRepository
from .supabase_repository import SupabaseSyncRepository
from .repository_factory import (
    RepositoryFactory,
    RepositoryContainer,
    get_repository_container,
    configure_repositories,
    get_repository,
    set_repository
)

__all__ = [
    # Base repository interface
    'BaseSyncRepository',
    'RepositoryError',
    'DataValidationError',
    'DataNotFoundError',

    # Concrete implementations
    'InMemorySyncRepository',
    'SupabaseSyncRepository',

    # Factory and dependency injection
    'RepositoryFactory',
    'RepositoryContainer',
    'get_repository_container',
    'configure_repositories',
    'get_repository',
    'set_repository',
]
