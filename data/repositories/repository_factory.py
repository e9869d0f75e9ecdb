"""Repository factory for creating repository instances."""

from __future__ import annotations

from typing import Dict, Any, Optional
import logging

from .base_repository import BaseSyncRepository
from .memory_repository import InMemorySyncRepository
from .supabase_repository import SupabaseSyncRepository

logger = logging.getLogger(__name__)


class RepositoryFactory:
    """Factory for creating repository instances based on configuration.

    This factory allows the service to switch between the Supabase backend
    and the in-memory backend used for development and tests.
    """

    _repositories: Dict[str, type] = {
        'supabase': SupabaseSyncRepository,
        'memory': InMemorySyncRepository,
    }

    @classmethod
    def create_repository(cls, repository_type: str = 'supabase', **kwargs) -> BaseSyncRepository:
        """Create a repository instance based on type.

        Args:
            repository_type: Type of repository to create ('supabase', 'memory')
            **kwargs: Additional arguments to pass to repository constructor

        Returns:
            Repository instance implementing BaseSyncRepository

        Raises:
            ValueError: If repository type is not supported
        """
        if repository_type not in cls._repositories:
            available_types = list(cls._repositories.keys())
            raise ValueError(
                f"Unsupported repository type: {repository_type}. "
                f"Available types: {available_types}"
            )

        repository_class = cls._repositories[repository_type]

        clean_kwargs = {k: v for k, v in kwargs.items() if k != 'type'}
        if repository_type == 'supabase':
            clean_kwargs = {k: v for k, v in clean_kwargs.items() if k in ['client', 'url', 'key']}

        try:
            logger.info(f"Creating {repository_type} repository")
            return repository_class(**clean_kwargs)
        except Exception as e:
            logger.error(f"Failed to create {repository_type} repository: {e}")
            raise

    @classmethod
    def register_repository(cls, name: str, repository_class: type) -> None:
        """Register a new repository type.

        Args:
            name: Name for the repository type
            repository_class: Repository class implementing BaseSyncRepository
        """
        if not issubclass(repository_class, BaseSyncRepository):
            raise ValueError(
                f"Repository class must implement BaseSyncRepository interface: {repository_class}"
            )

        cls._repositories[name] = repository_class
        logger.info(f"Registered repository type: {name}")

    @classmethod
    def get_available_types(cls) -> list[str]:
        return list(cls._repositories.keys())


class RepositoryContainer:
    """Holds the process-wide repository instance.

    Routes, the scheduler and the CLI all resolve the repository through
    this container so tests can swap in an in-memory backend.
    """

    def __init__(self):
        self._repository: Optional[BaseSyncRepository] = None
        self._config: Dict[str, Any] = {}

    def configure(self, config: Dict[str, Any]) -> None:
        """Configure the container with repository settings.

        Args:
            config: Dictionary with a 'type' key plus constructor arguments
        """
        self._config = config.copy()
        self._repository = None
        logger.info(f"Repository container configured with type: {config.get('type')}")

    def get_repository(self) -> BaseSyncRepository:
        if self._repository is None:
            repository_type = self._config.get('type', 'supabase')
            kwargs = {k: v for k, v in self._config.items() if k != 'type'}
            self._repository = RepositoryFactory.create_repository(repository_type, **kwargs)
            logger.info(f"Created repository of type '{repository_type}'")
        return self._repository

    def set_repository(self, repository: BaseSyncRepository) -> None:
        self._repository = repository
        logger.info(f"Set repository instance: {type(repository).__name__}")

    def clear(self) -> None:
        """Drop the cached repository instance."""
        self._repository = None


# Global repository container instance
_container = RepositoryContainer()


def get_repository_container() -> RepositoryContainer:
    return _container


def configure_repositories(config: Dict[str, Any]) -> None:
    """Configure the global repository container.

    Args:
        config: Repository configuration dictionary
    """
    _container.configure(config)


def get_repository() -> BaseSyncRepository:
    """Get the repository instance from the global container."""
    return _container.get_repository()


def set_repository(repository: BaseSyncRepository) -> None:
    _container.set_repository(repository)
