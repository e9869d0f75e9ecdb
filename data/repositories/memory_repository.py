"""In-memory repository implementation.

Used for local development and the test-suite. Rows are kept as plain
dicts keyed by id, and every operation holds a single lock so the
conditional updates (job claim, domain lock) behave atomically like
their SQL counterparts.
"""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
import logging

from config.constants import (
    DEFAULT_JOB_TYPE,
    DOMAIN_RUNNING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
)
from utils.timezone_utils import parse_timestamp, utc_now, utc_now_iso
from .base_repository import BaseSyncRepository, DataValidationError
from ..models.trader import Trader, Holding, Trade
from ..models.sync_job import SyncJob
from ..models.sync_state import DomainStatus, SyncLogEntry

logger = logging.getLogger(__name__)


def _before(value: Any, threshold: datetime) -> bool:
    dt = parse_timestamp(value)
    return dt is not None and dt < threshold


class InMemorySyncRepository(BaseSyncRepository):
    """Thread-safe dict-backed implementation of the sync repository."""

    def __init__(self, **kwargs):
        self._lock = threading.RLock()
        self.traders: Dict[str, Dict[str, Any]] = {}
        self.posts: List[Dict[str, Any]] = []
        self.assets: Dict[str, Dict[str, Any]] = {}
        self.holdings: Dict[str, List[Dict[str, Any]]] = {}
        self.trades: List[Dict[str, Any]] = []
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.domains: Dict[str, Dict[str, Any]] = {}
        self.sync_logs: List[Dict[str, Any]] = []
        self._job_seq = 0

    # ------------------------------------------------------------------
    # Seeding helpers
    # ------------------------------------------------------------------

    def add_trader(self, trader_id: Optional[str] = None, **fields) -> str:
        """Insert a trader row directly (development and test seeding)."""
        with self._lock:
            trader_id = trader_id or str(uuid.uuid4())
            self.traders[trader_id] = {'id': trader_id, 'updated_at': None, **fields}
            return trader_id

    def add_post(self, trader_id: Optional[str], created_at: Optional[str] = None) -> None:
        with self._lock:
            self.posts.append({'trader_id': trader_id, 'created_at': created_at or utc_now_iso()})

    def add_job(self, trader_id: Optional[str], **fields) -> str:
        """Insert a job row directly, bypassing enqueue rules."""
        row = SyncJob.new_row(trader_id, fields.pop('job_type', DEFAULT_JOB_TYPE))
        row.update(fields)
        with self._lock:
            return self._insert_job(row)

    def _insert_job(self, row: Dict[str, Any]) -> str:
        self._job_seq += 1
        job_id = str(row.get('id') or uuid.uuid4())
        stored = {
            'id': job_id,
            'retry_count': 0,
            'error_message': None,
            'started_at': None,
            'finished_at': None,
            **row,
        }
        stored['id'] = job_id
        if not stored.get('created_at'):
            stored['created_at'] = utc_now_iso()
        # Insertion order breaks ties between equal created_at values
        stored['_seq'] = self._job_seq
        self.jobs[job_id] = stored
        return job_id

    @staticmethod
    def _public(row: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in row.items() if not k.startswith('_')}

    def _job_sort_key(self, row: Dict[str, Any]):
        return (parse_timestamp(row.get('created_at')) or utc_now(), row.get('_seq', 0))

    # ------------------------------------------------------------------
    # Traders
    # ------------------------------------------------------------------

    def list_trader_ids(self) -> List[str]:
        with self._lock:
            return list(self.traders.keys())

    def find_stale_trader_ids(self, updated_before: datetime) -> List[str]:
        with self._lock:
            return [
                trader_id for trader_id, row in self.traders.items()
                if row.get('updated_at') is None or _before(row.get('updated_at'), updated_before)
            ]

    def find_active_trader_ids(self, since: datetime) -> List[str]:
        with self._lock:
            active = [
                str(post['trader_id']) for post in self.posts
                if post.get('trader_id') is not None
                and (parse_timestamp(post.get('created_at')) or since) > since
            ]
            return list(dict.fromkeys(active))

    def get_trader(self, trader_id: str) -> Optional[Trader]:
        with self._lock:
            row = self.traders.get(trader_id)
            return Trader.from_dict(row) if row else None

    def update_trader(self, trader_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            if trader_id in self.traders:
                self.traders[trader_id].update(fields)

    def get_or_create_asset(self, symbol: str, name: Optional[str] = None, asset_type: str = 'stock') -> str:
        if not symbol:
            raise DataValidationError("Asset symbol is required")
        with self._lock:
            for asset_id, asset in self.assets.items():
                if asset['symbol'] == symbol:
                    return asset_id
            asset_id = str(uuid.uuid4())
            self.assets[asset_id] = {'id': asset_id, 'symbol': symbol, 'name': name or symbol, 'asset_type': asset_type}
            return asset_id

    def replace_holdings(self, trader_id: str, holdings: Sequence[Holding]) -> int:
        with self._lock:
            rows: Dict[str, Dict[str, Any]] = {}
            for holding in holdings:
                asset_id = self.get_or_create_asset(holding.symbol, holding.name, holding.asset_type)
                rows[asset_id] = {
                    'trader_id': trader_id,
                    'asset_id': asset_id,
                    'allocation_pct': holding.allocation_pct,
                    'updated_at': utc_now_iso(),
                }
            self.holdings[trader_id] = list(rows.values())
            return len(rows)

    def insert_trades(self, trader_id: str, trades: Sequence[Trade]) -> int:
        with self._lock:
            for trade in trades:
                self.trades.append({
                    'trader_id': trader_id,
                    'asset_id': self.get_or_create_asset(trade.symbol),
                    'action': trade.action,
                    'executed_at': trade.executed_at.isoformat(),
                })
            return len(trades)

    # ------------------------------------------------------------------
    # Sync jobs
    # ------------------------------------------------------------------

    def insert_jobs(self, rows: Sequence[Dict[str, Any]]) -> int:
        with self._lock:
            for row in rows:
                self._insert_job(dict(row))
            return len(rows)

    def in_progress_trader_ids(self) -> List[str]:
        with self._lock:
            return [
                row['trader_id'] for row in self.jobs.values()
                if row['status'] == STATUS_IN_PROGRESS and row.get('trader_id') is not None
            ]

    def complete_open_jobs_created_before(self, created_before: datetime) -> int:
        with self._lock:
            count = 0
            for row in self.jobs.values():
                if row['status'] in (STATUS_PENDING, STATUS_IN_PROGRESS) and _before(row.get('created_at'), created_before):
                    row.update({'status': STATUS_COMPLETED, 'finished_at': utc_now_iso()})
                    count += 1
            return count

    def reset_stuck_jobs(self, started_before: datetime) -> int:
        with self._lock:
            count = 0
            for row in self.jobs.values():
                if row['status'] == STATUS_IN_PROGRESS and _before(row.get('started_at'), started_before):
                    row.update({'status': STATUS_PENDING, 'started_at': None})
                    count += 1
            return count

    def fetch_pending_jobs(self, limit: int) -> List[SyncJob]:
        with self._lock:
            pending = [row for row in self.jobs.values() if row['status'] == STATUS_PENDING]
            pending.sort(key=self._job_sort_key)
            return [SyncJob.from_dict(self._public(row)) for row in pending[:limit]]

    def claim_job(self, job_id: str) -> Optional[SyncJob]:
        with self._lock:
            row = self.jobs.get(job_id)
            if not row or row['status'] != STATUS_PENDING:
                return None
            row.update({'status': STATUS_IN_PROGRESS, 'started_at': utc_now_iso()})
            return SyncJob.from_dict(self._public(row))

    def get_job(self, job_id: str, with_trader: bool = False) -> Optional[SyncJob]:
        with self._lock:
            row = self.jobs.get(job_id)
            if not row:
                return None
            data = self._public(row)
            if with_trader and row.get('trader_id') in self.traders:
                data['trader'] = copy.deepcopy(self.traders[row['trader_id']])
            return SyncJob.from_dict(data)

    def update_job(self, job_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            if job_id in self.jobs:
                self.jobs[job_id].update(fields)

    def count_jobs(self, status: Union[str, Iterable[str]]) -> int:
        statuses = {status} if isinstance(status, str) else set(status)
        with self._lock:
            return sum(1 for row in self.jobs.values() if row['status'] in statuses)

    def requeue_failed_jobs(self, max_retry_count: int) -> int:
        with self._lock:
            count = 0
            for row in self.jobs.values():
                if row['status'] == STATUS_FAILED and int(row.get('retry_count') or 0) <= max_retry_count:
                    row.update({'status': STATUS_PENDING, 'error_message': None, 'retry_count': 0})
                    count += 1
            return count

    def list_jobs(self, status: Optional[str] = None, ascending: bool = False, limit: int = 25) -> List[SyncJob]:
        with self._lock:
            rows = [row for row in self.jobs.values() if status is None or row['status'] == status]
            rows.sort(key=self._job_sort_key, reverse=not ascending)
            return [SyncJob.from_dict(self._public(row)) for row in rows[:limit]]

    # ------------------------------------------------------------------
    # Domain locks and sync logs
    # ------------------------------------------------------------------

    def get_domain_status(self, domain: str) -> Optional[DomainStatus]:
        with self._lock:
            row = self.domains.get(domain)
            return DomainStatus.from_dict(row) if row else None

    def try_acquire_domain_lock(self, domain: str, holder: str, stale_before: datetime) -> bool:
        with self._lock:
            row = self.domains.get(domain)
            if row and row.get('status') == DOMAIN_RUNNING and not _before(row.get('lock_acquired_at'), stale_before):
                return False
            row = row or {'domain': domain}
            row.update({'status': DOMAIN_RUNNING, 'lock_holder': holder, 'lock_acquired_at': utc_now_iso()})
            self.domains[domain] = row
            return True

    def update_domain_status(self, domain: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            if domain in self.domains:
                self.domains[domain].update(fields)

    def set_domain_status(self, domain: str, **fields) -> None:
        """Create or overwrite a domain row directly (seeding helper)."""
        with self._lock:
            self.domains[domain] = {'domain': domain, **fields}

    def insert_sync_log(self, entry: SyncLogEntry) -> None:
        with self._lock:
            self.sync_logs.append({**entry.to_dict(), 'created_at': utc_now_iso()})
            logger.debug(f"sync_log [{entry.level}] {entry.domain}: {entry.message}")
