"""Configuration management system."""

from __future__ import annotations

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from dotenv import load_dotenv

from .constants import (
    BULLAWARE_BASE_URL,
    DEFAULT_BULLAWARE_RATE_LIMIT_DELAY_SECONDS,
    DEFAULT_DELAY_BETWEEN_JOBS_SECONDS,
    DEFAULT_DISPATCH_BATCH_SIZE,
    DEFAULT_ENQUEUE_BATCH_SIZE,
    DEFAULT_HOURS_ACTIVE,
    DEFAULT_HOURS_STALE,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_INVOKE_TIMEOUT_SECONDS,
    DEFAULT_LOCK_TTL_MINUTES,
    DEFAULT_LOG_LEVEL,
    DEFAULT_LOG_TIMEZONE,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REPOSITORY_TYPE,
    DEFAULT_STUCK_JOB_MINUTES,
    LOG_FILE,
)

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


class Settings:
    """Configuration management class for the sync service.

    Defaults are overridden first by an optional JSON file, then by
    environment variables.
    """

    def __init__(self, config_file: Optional[str] = None):
        """Initialize settings.

        Args:
            config_file: Optional path to configuration file
        """
        self._config: Dict[str, Any] = {}
        self._config_file = config_file
        self._load_default_config()

        if config_file:
            self.load_from_file(config_file)

        self._load_from_environment()

    def _load_default_config(self) -> None:
        """Load default configuration values."""
        self._config = {
            'repository': {
                'type': DEFAULT_REPOSITORY_TYPE,
            },
            'dispatch': {
                'batch_size': DEFAULT_DISPATCH_BATCH_SIZE,
                'max_concurrency': DEFAULT_MAX_CONCURRENCY,
                'delay_between_jobs_seconds': DEFAULT_DELAY_BETWEEN_JOBS_SECONDS,
                'invoke_timeout_seconds': DEFAULT_INVOKE_TIMEOUT_SECONDS,
                'invoke_mode': 'local',
                'lock_ttl_minutes': DEFAULT_LOCK_TTL_MINUTES,
                'stuck_job_minutes': DEFAULT_STUCK_JOB_MINUTES,
            },
            'process': {
                'max_retries': DEFAULT_MAX_RETRIES,
            },
            'enqueue': {
                'hours_stale': DEFAULT_HOURS_STALE,
                'hours_active': DEFAULT_HOURS_ACTIVE,
                'batch_size': DEFAULT_ENQUEUE_BATCH_SIZE,
            },
            'bullaware': {
                'base_url': BULLAWARE_BASE_URL,
                'rate_limit_delay_seconds': DEFAULT_BULLAWARE_RATE_LIMIT_DELAY_SECONDS,
                'timeout_seconds': DEFAULT_HTTP_TIMEOUT_SECONDS,
            },
            'functions': {
                'base_url': None,
            },
            'logging': {
                'level': DEFAULT_LOG_LEVEL,
                'file': LOG_FILE,
                'timezone': DEFAULT_LOG_TIMEZONE,
            },
            'scheduler': {
                'enabled': False,
                'enqueue_interval_minutes': 60,
                'dispatch_interval_minutes': 2,
                'clear_locks_interval_minutes': 15,
            },
        }

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        if os.getenv('TRADER_SYNC_REPOSITORY'):
            self._config['repository']['type'] = os.getenv('TRADER_SYNC_REPOSITORY')

        # Dispatch tuning
        if os.getenv('DISPATCH_BATCH_SIZE'):
            self._config['dispatch']['batch_size'] = int(os.getenv('DISPATCH_BATCH_SIZE'))

        if os.getenv('DISPATCH_MAX_CONCURRENCY'):
            self._config['dispatch']['max_concurrency'] = int(os.getenv('DISPATCH_MAX_CONCURRENCY'))

        if os.getenv('DISPATCH_DELAY_SECONDS'):
            self._config['dispatch']['delay_between_jobs_seconds'] = float(os.getenv('DISPATCH_DELAY_SECONDS'))

        if os.getenv('DISPATCH_INVOKE_MODE'):
            self._config['dispatch']['invoke_mode'] = os.getenv('DISPATCH_INVOKE_MODE')

        if os.getenv('BULLAWARE_BASE_URL'):
            self._config['bullaware']['base_url'] = os.getenv('BULLAWARE_BASE_URL')

        # Functions are served next to the database unless told otherwise
        functions_url = os.getenv('FUNCTIONS_BASE_URL') or os.getenv('SUPABASE_URL')
        if functions_url:
            self._config['functions']['base_url'] = functions_url.rstrip('/')

        if os.getenv('TRADER_SYNC_LOG_LEVEL'):
            self._config['logging']['level'] = os.getenv('TRADER_SYNC_LOG_LEVEL').upper()

        if os.getenv('TRADER_SYNC_SCHEDULER', '').lower() == 'true':
            self._config['scheduler']['enabled'] = True

        # Development mode
        if os.getenv('TRADER_SYNC_DEV', 'false').lower() == 'true':
            self._config['logging']['level'] = 'DEBUG'

    def load_from_file(self, config_file: str) -> None:
        """Load configuration from JSON file.

        Args:
            config_file: Path to configuration file
        """
        config_path = Path(config_file)

        if not config_path.exists():
            logger.warning(f"Configuration file not found: {config_file}")
            return

        try:
            with open(config_path, 'r') as f:
                file_config = json.load(f)

            self._merge_config(self._config, file_config)
            logger.info(f"Loaded configuration from: {config_file}")

        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load configuration file {config_file}: {e}")

    def save_to_file(self, config_file: str) -> None:
        """Save configuration to JSON file.

        Args:
            config_file: Path to save configuration file
        """
        config_path = Path(config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(config_path, 'w') as f:
                json.dump(self._config, f, indent=2)

            logger.info(f"Saved configuration to: {config_file}")

        except OSError as e:
            logger.error(f"Failed to save configuration file {config_file}: {e}")

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> None:
        """Recursively merge configuration dictionaries.

        Args:
            base: Base configuration dictionary
            override: Override configuration dictionary
        """
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key.

        Args:
            key: Configuration key (supports dot notation, e.g., 'dispatch.batch_size')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value by key.

        Args:
            key: Configuration key (supports dot notation)
            value: Value to set
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def get_repository_type(self) -> str:
        """Get repository type ('supabase' or 'memory')."""
        return self.get('repository.type', DEFAULT_REPOSITORY_TYPE)

    def get_dispatch_config(self) -> Dict[str, Any]:
        return dict(self.get('dispatch', {}))

    def get_enqueue_config(self) -> Dict[str, Any]:
        return dict(self.get('enqueue', {}))

    def get_bullaware_config(self) -> Dict[str, Any]:
        return dict(self.get('bullaware', {}))

    def get_logging_config(self) -> Dict[str, Any]:
        return dict(self.get('logging', {}))

    def get_scheduler_config(self) -> Dict[str, Any]:
        return dict(self.get('scheduler', {}))

    def get_max_retries(self) -> int:
        return int(self.get('process.max_retries', DEFAULT_MAX_RETRIES))

    def get_functions_base_url(self) -> Optional[str]:
        return self.get('functions.base_url')

    def is_development_mode(self) -> bool:
        """Check if development mode is enabled."""
        return os.getenv('TRADER_SYNC_DEV', 'false').lower() == 'true'


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance.

    Returns:
        Global settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def configure_system(config_file: Optional[str] = None) -> Settings:
    """Configure the system with settings.

    Args:
        config_file: Optional path to configuration file

    Returns:
        Configured settings instance
    """
    global _settings
    _settings = Settings(config_file)
    return _settings
