"""Configuration management for the trader sync service."""

from .settings import Settings, get_settings, configure_system
from .constants import *

__all__ = [
    'Settings',
    'get_settings',
    'configure_system',
    # Constants will be imported via *
]
