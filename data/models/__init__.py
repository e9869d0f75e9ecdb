"""Data models for the trader sync service.

Plain dataclasses mirroring the database rows, with dict conversion
for both the Supabase and in-memory backends.
"""

from .trader import Trader, Holding, Trade, TRADER_METRIC_FIELDS
from .sync_job import SyncJob
from .sync_state import DomainStatus, SyncLogEntry

__all__ = [
    'Trader',
    'Holding',
    'Trade',
    'TRADER_METRIC_FIELDS',
    'SyncJob',
    'DomainStatus',
    'SyncLogEntry',
]
