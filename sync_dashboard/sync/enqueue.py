"""
Enqueue Sync Jobs
=================

Selects the traders that need a sync and inserts one pending job per
trader into sync_jobs.

Target selection, first match wins:
1. explicit trader ids
2. force: every trader
3. default: stale traders plus traders that posted recently
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from config.constants import (
    DEFAULT_ENQUEUE_BATCH_SIZE,
    DEFAULT_HOURS_ACTIVE,
    DEFAULT_HOURS_STALE,
    DEFAULT_JOB_TYPE,
    FORCE_MODE_OLD_JOB_HOURS,
    FUNCTION_SYNC_TRADERS,
)
from data.models.sync_job import SyncJob
from data.repositories.base_repository import BaseSyncRepository, RepositoryError
from sync_dashboard.errors import FunctionInvocationError
from utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class EnqueueResult:
    success: bool
    message: str
    enqueued_count: int = 0
    attempted: int = 0
    final_trader_ids: int = 0
    error: Optional[str] = None
    debug: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'success': self.success,
            'message': self.message,
            'enqueued_count': self.enqueued_count,
            'attempted': self.attempted,
            'jobs_to_insert': self.attempted,
            'final_trader_ids': self.final_trader_ids,
        }
        if self.error:
            data['error'] = self.error
        if self.debug:
            data['debug'] = self.debug
        data.update(self.extra)
        return data


def _is_duplicate_error(message: str) -> bool:
    text = message.lower()
    return 'duplicate' in text or 'unique' in text


def _is_permission_error(message: str) -> bool:
    text = message.lower()
    return 'permission' in text or 'policy' in text


def select_target_trader_ids(
    repo: BaseSyncRepository,
    trader_ids: Optional[Iterable[str]] = None,
    force: bool = False,
    hours_stale: float = DEFAULT_HOURS_STALE,
    hours_active: float = DEFAULT_HOURS_ACTIVE,
) -> List[str]:
    """Resolve the trader ids to enqueue, de-duplicated in first-seen order."""
    targets: Dict[str, None] = {}

    explicit = [str(t) for t in (trader_ids or []) if t]
    if explicit:
        targets.update(dict.fromkeys(explicit))
        logger.info(f"Received {len(targets)} specific trader IDs to enqueue.")
    elif force:
        logger.info("Force mode enabled: enqueuing all traders.")
        targets.update(dict.fromkeys(repo.list_trader_ids()))
        logger.info(f"Found {len(targets)} total traders to enqueue.")
    else:
        now = utc_now()
        stale = repo.find_stale_trader_ids(now - timedelta(hours=hours_stale))
        targets.update(dict.fromkeys(stale))
        logger.info(f"Found {len(stale)} stale traders (older than {hours_stale}h).")

        active = repo.find_active_trader_ids(now - timedelta(hours=hours_active))
        targets.update(dict.fromkeys(active))
        logger.info(f"Found {len(active)} unique traders active in last {hours_active / 24:g} days.")

    return list(targets)


def insert_jobs_in_batches(repo: BaseSyncRepository, rows: List[Dict[str, Any]],
                           batch_size: int = DEFAULT_ENQUEUE_BATCH_SIZE) -> int:
    """Insert job rows batch by batch.

    A duplicate/unique violation skips that batch, a permission or policy
    error aborts, any other error is logged and the next batch continues.

    Returns:
        Number of jobs actually inserted

    Raises:
        RepositoryError: On permission/policy failures
    """
    inserted = 0
    for start in range(0, len(rows), batch_size):
        batch = rows[start:start + batch_size]
        batch_number = start // batch_size + 1
        try:
            count = repo.insert_jobs(batch)
        except RepositoryError as e:
            message = str(e)
            if _is_duplicate_error(message):
                logger.warning(f"Some duplicates in batch {batch_number}, continuing...")
            elif _is_permission_error(message):
                logger.error(f"Permission/RLS error inserting batch {batch_number}: {message}")
                raise
            else:
                logger.error(f"Batch {batch_number} failed, continuing with next batch: {message}")
            continue

        inserted += count
        logger.info(f"Inserted batch {batch_number}: {count} jobs (total: {inserted}/{len(rows)})")

    return inserted


def enqueue_sync_jobs(
    repo: BaseSyncRepository,
    trader_ids: Optional[Iterable[str]] = None,
    force: bool = False,
    hours_stale: float = DEFAULT_HOURS_STALE,
    hours_active: float = DEFAULT_HOURS_ACTIVE,
    job_type: str = DEFAULT_JOB_TYPE,
    batch_size: int = DEFAULT_ENQUEUE_BATCH_SIZE,
) -> EnqueueResult:
    """Create pending sync jobs for the selected traders.

    In force mode, pending/in_progress jobs created more than 24h ago are
    first marked completed. Otherwise traders with an in_progress job are
    skipped; several pending jobs per trader are allowed.

    Raises:
        RepositoryError: When trader selection fails or a batch hits a permission error
    """
    explicit = [t for t in (trader_ids or []) if t]
    final_ids = select_target_trader_ids(repo, explicit, force, hours_stale, hours_active)
    logger.info(f"Total unique traders to enqueue: {len(final_ids)}")

    if not final_ids:
        logger.warning("No traders found to enqueue. This might indicate a problem.")
        return EnqueueResult(
            success=False,
            message="No traders to enqueue.",
            debug={
                'force_mode': force,
                'specific_ids_provided': len(explicit),
                'hours_stale': hours_stale,
                'hours_active': hours_active,
            }
        )

    if force:
        old_threshold = utc_now() - timedelta(hours=FORCE_MODE_OLD_JOB_HOURS)
        marked = repo.complete_open_jobs_created_before(old_threshold)
        if marked:
            logger.info(f"Force mode: Marked {marked} old jobs as completed.")
        to_enqueue = final_ids
    else:
        in_progress = set(repo.in_progress_trader_ids())
        to_enqueue = [trader_id for trader_id in final_ids if trader_id not in in_progress]
        logger.info(f"Filtered out {len(final_ids) - len(to_enqueue)} traders with in_progress jobs.")

    rows = [SyncJob.new_row(trader_id, job_type) for trader_id in to_enqueue]
    if not rows:
        return EnqueueResult(
            success=False,
            message="All selected traders already have a job in progress.",
            error="No jobs to insert",
            final_trader_ids=len(final_ids),
            debug={'final_trader_ids': len(final_ids), 'force_mode': force, 'jobs_to_insert_length': 0}
        )

    inserted = insert_jobs_in_batches(repo, rows, batch_size)

    return EnqueueResult(
        success=True,
        message=f"Successfully enqueued {inserted} new sync jobs.",
        enqueued_count=inserted,
        attempted=len(rows),
        final_trader_ids=len(final_ids),
    )


def sync_traders_then_enqueue(repo: BaseSyncRepository, function_client, **kwargs) -> EnqueueResult:
    """Refresh the trader list through the sync-traders function, then force-enqueue everyone.

    Args:
        repo: Repository
        function_client: FunctionClient used to invoke sync-traders
        **kwargs: Passed through to enqueue_sync_jobs

    Raises:
        FunctionInvocationError: sync-traders could not be invoked
    """
    logger.info("sync_traders is true, invoking sync-traders function")
    try:
        sync_result = function_client.invoke(FUNCTION_SYNC_TRADERS, {})
    except FunctionInvocationError as e:
        logger.error(f"Error invoking sync-traders: {e}")
        raise

    kwargs['force'] = True
    result = enqueue_sync_jobs(repo, **kwargs)
    total = sync_result.get('total_traders', 0) or 0
    result.message = f"Sync-traders completed: {sync_result.get('synced', 0) or 0} traders synced. Total in database: {total}"
    result.extra.update({'sync_result': sync_result, 'total_traders': total})
    return result
