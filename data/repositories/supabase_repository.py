"""Supabase-based repository implementation."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
import logging

from config.constants import (
    ASSETS_TABLE,
    DOMAIN_RUNNING,
    DOMAIN_STATUS_TABLE,
    HOLDINGS_TABLE,
    POSTS_TABLE,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    SUPABASE_PAGE_SIZE,
    SYNC_JOBS_TABLE,
    SYNC_LOGS_TABLE,
    TRADERS_TABLE,
    TRADES_TABLE,
)
from utils.timezone_utils import utc_now_iso
from .base_repository import BaseSyncRepository, RepositoryError
from ..models.trader import Trader, Holding, Trade
from ..models.sync_job import SyncJob
from ..models.sync_state import DomainStatus, SyncLogEntry

logger = logging.getLogger(__name__)

# Suppress httpx INFO logs (Supabase HTTP requests)
logging.getLogger("httpx").setLevel(logging.WARNING)

TRADER_JOIN = "*, trader:traders(id, etoro_username, etoro_cid, display_name)"


def _iso(dt: datetime) -> str:
    """UTC timestamp in the 'Z' form PostgREST filters accept unescaped."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def _is_duplicate_error(error: Exception) -> bool:
    message = str(error).lower()
    return '23505' in message or 'duplicate' in message or 'unique' in message


class SupabaseSyncRepository(BaseSyncRepository):
    """Supabase-based implementation of the sync repository.

    Every query goes through the PostgREST builder of a supabase-py client;
    state transitions that must not race are expressed as conditional
    updates so the database decides the winner.
    """

    def __init__(self, client: Any = None, url: Optional[str] = None, key: Optional[str] = None, **kwargs):
        """Initialize Supabase repository.

        Args:
            client: Existing supabase-py Client (takes precedence)
            url: Supabase project URL
            key: Supabase service role key
        """
        if client is not None:
            self.supabase = client
            return

        self.supabase_url = url or os.getenv("SUPABASE_URL")
        self.supabase_key = key or os.getenv("SUPABASE_SECRET_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY")

        if not self.supabase_url or not self.supabase_key:
            raise RepositoryError("Supabase URL and service role key must be provided")

        try:
            from supabase import create_client
            self.supabase = create_client(self.supabase_url, self.supabase_key)
            logger.info("Supabase client initialized successfully")
        except Exception as e:
            raise RepositoryError(f"Failed to initialize Supabase client: {e}")

    def _table(self, name: str):
        return self.supabase.table(name)

    # ------------------------------------------------------------------
    # Traders
    # ------------------------------------------------------------------

    def list_trader_ids(self) -> List[str]:
        try:
            # Supabase caps responses at 1000 rows, so paginate
            all_ids: List[str] = []
            offset = 0

            while True:
                result = self._table(TRADERS_TABLE) \
                    .select("id") \
                    .range(offset, offset + SUPABASE_PAGE_SIZE - 1) \
                    .execute()

                rows = result.data or []
                all_ids.extend(str(row['id']) for row in rows)
                logger.debug(f"Fetched trader page at offset {offset}: {len(rows)} rows (total so far: {len(all_ids)})")

                if len(rows) < SUPABASE_PAGE_SIZE:
                    break
                offset += SUPABASE_PAGE_SIZE

            return all_ids
        except Exception as e:
            logger.error(f"Failed to list traders: {e}")
            raise RepositoryError(f"Failed to list traders: {e}")

    def find_stale_trader_ids(self, updated_before: datetime) -> List[str]:
        try:
            result = self._table(TRADERS_TABLE) \
                .select("id") \
                .or_(f"updated_at.lt.{_iso(updated_before)},updated_at.is.null") \
                .execute()
            return [str(row['id']) for row in (result.data or [])]
        except Exception as e:
            logger.error(f"Failed to fetch stale traders: {e}")
            raise RepositoryError(f"Failed to fetch stale traders: {e}")

    def find_active_trader_ids(self, since: datetime) -> List[str]:
        try:
            result = self._table(POSTS_TABLE) \
                .select("trader_id") \
                .not_.is_("trader_id", "null") \
                .gt("created_at", _iso(since)) \
                .execute()
            # Preserve first-seen order while de-duplicating
            return list(dict.fromkeys(str(row['trader_id']) for row in (result.data or [])))
        except Exception as e:
            logger.error(f"Failed to fetch active traders: {e}")
            raise RepositoryError(f"Failed to fetch active traders: {e}")

    def get_trader(self, trader_id: str) -> Optional[Trader]:
        try:
            result = self._table(TRADERS_TABLE).select("*").eq("id", trader_id).limit(1).execute()
            return Trader.from_dict(result.data[0]) if result.data else None
        except Exception as e:
            raise RepositoryError(f"Failed to get trader {trader_id}: {e}")

    def update_trader(self, trader_id: str, fields: Dict[str, Any]) -> None:
        try:
            self._table(TRADERS_TABLE).update(fields).eq("id", trader_id).execute()
        except Exception as e:
            raise RepositoryError(f"Failed to update trader {trader_id}: {e}")

    def get_or_create_asset(self, symbol: str, name: Optional[str] = None, asset_type: str = 'stock') -> str:
        try:
            existing = self._table(ASSETS_TABLE).select("id").eq("symbol", symbol).limit(1).execute()
            if existing.data:
                return str(existing.data[0]['id'])

            try:
                created = self._table(ASSETS_TABLE).insert({
                    'symbol': symbol,
                    'name': name or symbol,
                    'asset_type': asset_type,
                }).execute()
                return str(created.data[0]['id'])
            except Exception as insert_error:
                if not _is_duplicate_error(insert_error):
                    raise
                # Another worker inserted the symbol first
                existing = self._table(ASSETS_TABLE).select("id").eq("symbol", symbol).limit(1).execute()
                if not existing.data:
                    raise
                return str(existing.data[0]['id'])
        except Exception as e:
            raise RepositoryError(f"Failed to get or create asset {symbol}: {e}")

    def replace_holdings(self, trader_id: str, holdings: Sequence[Holding]) -> int:
        try:
            rows: Dict[str, Dict[str, Any]] = {}
            now = utc_now_iso()
            for holding in holdings:
                asset_id = self.get_or_create_asset(holding.symbol, holding.name, holding.asset_type)
                rows[asset_id] = {
                    'trader_id': trader_id,
                    'asset_id': asset_id,
                    'allocation_pct': holding.allocation_pct,
                    'updated_at': now,
                }

            self._table(HOLDINGS_TABLE).delete().eq("trader_id", trader_id).execute()
            if rows:
                self._table(HOLDINGS_TABLE).upsert(list(rows.values()), on_conflict="trader_id,asset_id").execute()
            return len(rows)
        except RepositoryError:
            raise
        except Exception as e:
            raise RepositoryError(f"Failed to replace holdings for trader {trader_id}: {e}")

    def insert_trades(self, trader_id: str, trades: Sequence[Trade]) -> int:
        try:
            rows = []
            for trade in trades:
                asset_id = self.get_or_create_asset(trade.symbol)
                rows.append({
                    'trader_id': trader_id,
                    'asset_id': asset_id,
                    'action': trade.action,
                    'executed_at': trade.executed_at.isoformat(),
                })
            if not rows:
                return 0
            result = self._table(TRADES_TABLE).insert(rows).execute()
            return len(result.data or [])
        except RepositoryError:
            raise
        except Exception as e:
            raise RepositoryError(f"Failed to insert trades for trader {trader_id}: {e}")

    # ------------------------------------------------------------------
    # Sync jobs
    # ------------------------------------------------------------------

    def insert_jobs(self, rows: Sequence[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        try:
            result = self._table(SYNC_JOBS_TABLE).insert(list(rows)).execute()
            return len(result.data or [])
        except Exception as e:
            # Keep the original message: enqueue decides which errors are fatal
            raise RepositoryError(str(e))

    def in_progress_trader_ids(self) -> List[str]:
        try:
            result = self._table(SYNC_JOBS_TABLE).select("trader_id").eq("status", STATUS_IN_PROGRESS).execute()
            return [str(row['trader_id']) for row in (result.data or []) if row.get('trader_id') is not None]
        except Exception as e:
            raise RepositoryError(f"Failed to fetch in-progress jobs: {e}")

    def complete_open_jobs_created_before(self, created_before: datetime) -> int:
        try:
            result = self._table(SYNC_JOBS_TABLE) \
                .update({'status': STATUS_COMPLETED, 'finished_at': utc_now_iso()}) \
                .in_("status", [STATUS_PENDING, STATUS_IN_PROGRESS]) \
                .lt("created_at", _iso(created_before)) \
                .execute()
            return len(result.data or [])
        except Exception as e:
            raise RepositoryError(f"Failed to complete old jobs: {e}")

    def reset_stuck_jobs(self, started_before: datetime) -> int:
        try:
            result = self._table(SYNC_JOBS_TABLE) \
                .update({'status': STATUS_PENDING, 'started_at': None}) \
                .eq("status", STATUS_IN_PROGRESS) \
                .lt("started_at", _iso(started_before)) \
                .execute()
            return len(result.data or [])
        except Exception as e:
            raise RepositoryError(f"Failed to reset stuck jobs: {e}")

    def fetch_pending_jobs(self, limit: int) -> List[SyncJob]:
        try:
            result = self._table(SYNC_JOBS_TABLE) \
                .select("*") \
                .eq("status", STATUS_PENDING) \
                .order("created_at", desc=False) \
                .limit(limit) \
                .execute()
            return [SyncJob.from_dict(row) for row in (result.data or [])]
        except Exception as e:
            logger.error(f"Error fetching pending jobs: {e}")
            raise RepositoryError(f"Failed to fetch pending jobs: {e}")

    def claim_job(self, job_id: str) -> Optional[SyncJob]:
        try:
            result = self._table(SYNC_JOBS_TABLE) \
                .update({'status': STATUS_IN_PROGRESS, 'started_at': utc_now_iso()}) \
                .eq("id", job_id) \
                .eq("status", STATUS_PENDING) \
                .execute()
            return SyncJob.from_dict(result.data[0]) if result.data else None
        except Exception as e:
            raise RepositoryError(f"Failed to claim job {job_id}: {e}")

    def get_job(self, job_id: str, with_trader: bool = False) -> Optional[SyncJob]:
        try:
            result = self._table(SYNC_JOBS_TABLE) \
                .select(TRADER_JOIN if with_trader else "*") \
                .eq("id", job_id) \
                .limit(1) \
                .execute()
            return SyncJob.from_dict(result.data[0]) if result.data else None
        except Exception as e:
            raise RepositoryError(f"Failed to get job {job_id}: {e}")

    def update_job(self, job_id: str, fields: Dict[str, Any]) -> None:
        try:
            self._table(SYNC_JOBS_TABLE).update(fields).eq("id", job_id).execute()
        except Exception as e:
            raise RepositoryError(f"Failed to update job {job_id}: {e}")

    def count_jobs(self, status: Union[str, Iterable[str]]) -> int:
        statuses = [status] if isinstance(status, str) else list(status)
        try:
            # PostgREST caps returned rows, so use count=exact for totals
            result = self._table(SYNC_JOBS_TABLE) \
                .select("id", count="exact") \
                .in_("status", statuses) \
                .limit(1) \
                .execute()
            return int(result.count or 0)
        except Exception as e:
            raise RepositoryError(f"Failed to count jobs: {e}")

    def requeue_failed_jobs(self, max_retry_count: int) -> int:
        try:
            result = self._table(SYNC_JOBS_TABLE) \
                .update({'status': STATUS_PENDING, 'error_message': None, 'retry_count': 0}) \
                .eq("status", STATUS_FAILED) \
                .lte("retry_count", max_retry_count) \
                .execute()
            return len(result.data or [])
        except Exception as e:
            raise RepositoryError(f"Failed to requeue failed jobs: {e}")

    def list_jobs(self, status: Optional[str] = None, ascending: bool = False, limit: int = 25) -> List[SyncJob]:
        try:
            query = self._table(SYNC_JOBS_TABLE).select("*")
            if status:
                query = query.eq("status", status)
            result = query.order("created_at", desc=not ascending).limit(limit).execute()
            return [SyncJob.from_dict(row) for row in (result.data or [])]
        except Exception as e:
            raise RepositoryError(f"Failed to list jobs: {e}")

    # ------------------------------------------------------------------
    # Domain locks and sync logs
    # ------------------------------------------------------------------

    def get_domain_status(self, domain: str) -> Optional[DomainStatus]:
        try:
            result = self._table(DOMAIN_STATUS_TABLE).select("*").eq("domain", domain).limit(1).execute()
            return DomainStatus.from_dict(result.data[0]) if result.data else None
        except Exception as e:
            raise RepositoryError(f"Failed to get status for domain {domain}: {e}")

    def try_acquire_domain_lock(self, domain: str, holder: str, stale_before: datetime) -> bool:
        lock_fields = {
            'status': DOMAIN_RUNNING,
            'lock_holder': holder,
            'lock_acquired_at': utc_now_iso(),
        }
        try:
            updated = self._table(DOMAIN_STATUS_TABLE) \
                .update(lock_fields) \
                .eq("domain", domain) \
                .or_(f"status.neq.{DOMAIN_RUNNING},lock_acquired_at.lt.{_iso(stale_before)}") \
                .execute()
            if updated.data:
                return True

            existing = self._table(DOMAIN_STATUS_TABLE).select("domain").eq("domain", domain).limit(1).execute()
            if existing.data:
                return False

            try:
                self._table(DOMAIN_STATUS_TABLE).insert({'domain': domain, **lock_fields}).execute()
                return True
            except Exception as insert_error:
                if _is_duplicate_error(insert_error):
                    # Lost the race to initialise the row
                    return False
                raise
        except Exception as e:
            raise RepositoryError(f"Failed to acquire lock for domain {domain}: {e}")

    def update_domain_status(self, domain: str, fields: Dict[str, Any]) -> None:
        try:
            self._table(DOMAIN_STATUS_TABLE).update(fields).eq("domain", domain).execute()
        except Exception as e:
            raise RepositoryError(f"Failed to update status for domain {domain}: {e}")

    def insert_sync_log(self, entry: SyncLogEntry) -> None:
        try:
            self._table(SYNC_LOGS_TABLE).insert(entry.to_dict()).execute()
        except Exception as e:
            raise RepositoryError(f"Failed to write sync log: {e}")
