"""Abstract base repository interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..models.trader import Trader, Holding, Trade
from ..models.sync_job import SyncJob
from ..models.sync_state import DomainStatus, SyncLogEntry


class BaseSyncRepository(ABC):
    """Abstract base class for the sync pipeline's data access.

    This interface defines the contract for all storage backends
    (Supabase, in-memory) so the enqueue/dispatch/process functions
    never talk to a client library directly.
    """

    # ------------------------------------------------------------------
    # Traders
    # ------------------------------------------------------------------

    @abstractmethod
    def list_trader_ids(self) -> List[str]:
        """Return the ids of every trader.

        Raises:
            RepositoryError: If data access fails
        """
        pass

    @abstractmethod
    def find_stale_trader_ids(self, updated_before: datetime) -> List[str]:
        """Return traders whose updated_at is older than the threshold or null.

        Raises:
            RepositoryError: If data access fails
        """
        pass

    @abstractmethod
    def find_active_trader_ids(self, since: datetime) -> List[str]:
        """Return distinct traders that posted after `since`.

        Raises:
            RepositoryError: If data access fails
        """
        pass

    @abstractmethod
    def get_trader(self, trader_id: str) -> Optional[Trader]:
        """Get a trader by id, or None."""
        pass

    @abstractmethod
    def update_trader(self, trader_id: str, fields: Dict[str, Any]) -> None:
        """Update columns on a trader row.

        Raises:
            RepositoryError: If the update fails
        """
        pass

    @abstractmethod
    def get_or_create_asset(self, symbol: str, name: Optional[str] = None, asset_type: str = 'stock') -> str:
        """Return the asset id for a symbol, inserting the asset if needed."""
        pass

    @abstractmethod
    def replace_holdings(self, trader_id: str, holdings: Sequence[Holding]) -> int:
        """Replace a trader's holdings with the given list.

        Returns:
            Number of holdings written
        """
        pass

    @abstractmethod
    def insert_trades(self, trader_id: str, trades: Sequence[Trade]) -> int:
        """Insert trades for a trader.

        Returns:
            Number of trades written
        """
        pass

    # ------------------------------------------------------------------
    # Sync jobs
    # ------------------------------------------------------------------

    @abstractmethod
    def insert_jobs(self, rows: Sequence[Dict[str, Any]]) -> int:
        """Insert job rows.

        Returns:
            Number of rows actually inserted

        Raises:
            RepositoryError: If the insert fails
        """
        pass

    @abstractmethod
    def in_progress_trader_ids(self) -> List[str]:
        """Return trader ids that currently have an in_progress job."""
        pass

    @abstractmethod
    def complete_open_jobs_created_before(self, created_before: datetime) -> int:
        """Mark old pending/in_progress jobs as completed.

        Returns:
            Number of jobs updated
        """
        pass

    @abstractmethod
    def reset_stuck_jobs(self, started_before: datetime) -> int:
        """Send in_progress jobs started before the threshold back to pending.

        Returns:
            Number of jobs reset
        """
        pass

    @abstractmethod
    def fetch_pending_jobs(self, limit: int) -> List[SyncJob]:
        """Return up to `limit` pending jobs, oldest first."""
        pass

    @abstractmethod
    def claim_job(self, job_id: str) -> Optional[SyncJob]:
        """Atomically move a job from pending to in_progress.

        The update is conditional on the current status, so when two
        dispatchers race for the same row only one gets it back.

        Returns:
            The claimed job, or None when it was not pending
        """
        pass

    @abstractmethod
    def get_job(self, job_id: str, with_trader: bool = False) -> Optional[SyncJob]:
        """Get a job by id, optionally joined with its trader."""
        pass

    @abstractmethod
    def update_job(self, job_id: str, fields: Dict[str, Any]) -> None:
        """Update columns on a job row.

        Raises:
            RepositoryError: If the update fails
        """
        pass

    @abstractmethod
    def count_jobs(self, status: Union[str, Iterable[str]]) -> int:
        """Count jobs in one status or any of several statuses."""
        pass

    @abstractmethod
    def requeue_failed_jobs(self, max_retry_count: int) -> int:
        """Reset failed jobs with retry_count <= max_retry_count to pending.

        Returns:
            Number of jobs requeued
        """
        pass

    @abstractmethod
    def list_jobs(self, status: Optional[str] = None, ascending: bool = False, limit: int = 25) -> List[SyncJob]:
        """List jobs ordered by created_at."""
        pass

    # ------------------------------------------------------------------
    # Domain locks and sync logs
    # ------------------------------------------------------------------

    @abstractmethod
    def get_domain_status(self, domain: str) -> Optional[DomainStatus]:
        """Get the status row for a sync domain, or None."""
        pass

    @abstractmethod
    def try_acquire_domain_lock(self, domain: str, holder: str, stale_before: datetime) -> bool:
        """Atomically take the lock for a domain.

        Succeeds when the row is missing, not running, or its lock was
        acquired before `stale_before`.

        Returns:
            True if this holder now owns the lock
        """
        pass

    @abstractmethod
    def update_domain_status(self, domain: str, fields: Dict[str, Any]) -> None:
        """Update columns on a domain status row."""
        pass

    @abstractmethod
    def insert_sync_log(self, entry: SyncLogEntry) -> None:
        """Append a row to sync_logs."""
        pass


class RepositoryError(Exception):
    """Base exception for repository operations."""
    pass


class DataValidationError(RepositoryError):
    """Exception raised when data validation fails."""
    pass


class DataNotFoundError(RepositoryError):
    """Exception raised when requested data is not found."""
    pass
