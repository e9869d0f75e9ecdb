"""
Queue Maintenance
=================

Operator functions around the sync queue: drain it by dispatching in a
loop, clear stale domain locks, and summarize what is in it.
"""

import logging
import re
import time
from collections import Counter
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from config.constants import (
    DEFAULT_FORCE_DELAY_SECONDS,
    DEFAULT_FORCE_MAX_ITERATIONS,
    DEFAULT_LOCK_DOMAINS,
    DEFAULT_LOCK_TTL_MINUTES,
    DEFAULT_STUCK_JOB_MINUTES,
    DOMAIN_IDLE,
    FORCE_REQUEUE_MAX_RETRY_COUNT,
    LEGACY_STATUS_RUNNING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
)
from data.models.sync_state import SyncLogEntry
from data.repositories.base_repository import BaseSyncRepository, RepositoryError
from utils.timezone_utils import utc_now, utc_now_iso

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r'\s+')
_RAY_ID = re.compile(r'\bRay ID:\s*[a-z0-9]+\b', re.IGNORECASE)
MAX_NORMALIZED_ERROR_LENGTH = 240


def force_process_queue(
    repo: BaseSyncRepository,
    dispatch_fn: Callable[[], Dict[str, Any]],
    max_iterations: int = DEFAULT_FORCE_MAX_ITERATIONS,
    delay_seconds: float = DEFAULT_FORCE_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Drain the queue by running dispatch until nothing is left.

    Stuck in_progress jobs are reset and failed jobs with few retries are
    requeued first. The loop stops on a dispatch exception, or when a pass
    dispatched nothing and no pending jobs remain.

    Args:
        repo: Repository
        dispatch_fn: Runs one dispatch pass and returns its result dict
        max_iterations: Upper bound on dispatch passes
        delay_seconds: Pause after a pass that dispatched something
    """
    stats: Dict[str, Any] = {
        'iterations': 0,
        'total_dispatched': 0,
        'total_processed': 0,
        'errors': [],
        'start_time': utc_now_iso(),
        'end_time': None,
    }

    logger.info("Starting force-process-queue...")
    initial_pending = repo.count_jobs(STATUS_PENDING)
    initial_in_progress = repo.count_jobs(STATUS_IN_PROGRESS)
    initial_failed = repo.count_jobs(STATUS_FAILED)
    logger.info(f"Found {initial_pending} pending, {initial_in_progress} in_progress, "
                f"{initial_failed} failed jobs initially.")

    reset = repo.reset_stuck_jobs(utc_now() - timedelta(minutes=DEFAULT_STUCK_JOB_MINUTES))
    if reset:
        logger.info(f"Reset {reset} stuck in_progress jobs back to pending")

    requeued = repo.requeue_failed_jobs(FORCE_REQUEUE_MAX_RETRY_COUNT)
    if requeued:
        logger.info(f"Reset {requeued} failed jobs back to pending for retry")

    for i in range(max_iterations):
        iteration = i + 1
        stats['iterations'] = iteration
        logger.info(f"Iteration {iteration}: dispatching...")

        try:
            result = dispatch_fn() or {}
        except Exception as e:
            logger.error(f"Error in iteration {iteration}: {e}")
            stats['errors'].append({'iteration': iteration, 'error': str(e)})
            break

        dispatched = result.get('dispatched_jobs') or 0
        attempted = result.get('attempted') or 0
        errors = result.get('errors') or []
        stats['total_dispatched'] += dispatched
        stats['total_processed'] += attempted

        if result.get('error'):
            stats['errors'].append({'iteration': iteration, 'error': result['error']})
        elif errors:
            stats['errors'].extend(errors)

        logger.info(f"Iteration {iteration}: Dispatched {dispatched} jobs (attempted {attempted})"
                    f"{f', {len(errors)} errors' if errors else ''}")

        current_pending = repo.count_jobs(STATUS_PENDING)
        if (dispatched == 0 or attempted == 0) and current_pending == 0:
            logger.info("No more pending jobs to process.")
            break

        if dispatched == 0:
            logger.info(f"Still have {current_pending} pending jobs but dispatch returned 0. Continuing...")

        if iteration < max_iterations and dispatched > 0 and delay_seconds > 0:
            sleep(delay_seconds)

    final_pending = repo.count_jobs(STATUS_PENDING)
    stats['end_time'] = utc_now_iso()

    summary = {
        **stats,
        'initial_pending': initial_pending,
        'final_pending': final_pending,
        'jobs_cleared': initial_pending - final_pending,
        'stuck_reset': reset,
        'failed_requeued': requeued,
        'success': len(stats['errors']) == 0,
    }
    logger.info(f"Force processing complete: {summary['jobs_cleared']} jobs cleared in {summary['iterations']} iterations")

    return {'message': "Force processing complete", 'summary': summary}


def clear_stale_locks(
    repo: BaseSyncRepository,
    domains: Optional[Iterable[str]] = None,
    cleared_by: str = 'admin',
    ttl_minutes: float = DEFAULT_LOCK_TTL_MINUTES,
) -> Dict[str, Any]:
    """Clear domain locks that are running and older than the TTL.

    Fresh locks and idle domains are left alone and reported in ``skipped``.
    """
    requested = list(domains or DEFAULT_LOCK_DOMAINS)
    logger.info(f"Checking domains: {', '.join(requested)}")

    now = utc_now()
    cleared: List[Dict[str, Any]] = []
    skipped: List[Dict[str, str]] = []

    for domain in requested:
        try:
            status = repo.get_domain_status(domain)
        except RepositoryError as e:
            logger.error(f"Error fetching {domain}: {e}")
            skipped.append({'domain': domain, 'reason': f"Fetch error: {e}"})
            continue

        if status is None:
            skipped.append({'domain': domain, 'reason': 'No status row found'})
            continue

        if not status.is_running:
            skipped.append({'domain': domain, 'reason': f"Not running (status: {status.status})"})
            continue

        age = status.lock_age_minutes(now)
        if not status.is_stale(ttl_minutes, now):
            skipped.append({'domain': domain, 'reason': f"Lock is fresh ({age} min old, TTL is {ttl_minutes:g} min)"})
            continue

        try:
            repo.update_domain_status(domain, {
                'status': DOMAIN_IDLE,
                'lock_holder': None,
                'lock_acquired_at': None,
                'last_error_message': f"Stale lock cleared by {cleared_by} (was {age} min old)",
                'last_error_at': utc_now_iso(),
            })
        except RepositoryError as e:
            logger.error(f"Error clearing {domain}: {e}")
            skipped.append({'domain': domain, 'reason': f"Update error: {e}"})
            continue

        acquired_at = status.lock_acquired_at.isoformat() if status.lock_acquired_at else None
        try:
            repo.insert_sync_log(SyncLogEntry(
                domain, 'warn',
                f"Stale lock manually cleared by {cleared_by} (was held by {status.lock_holder} for {age} min)",
                {
                    'cleared_by': cleared_by,
                    'previous_holder': status.lock_holder,
                    'lock_acquired_at': acquired_at,
                    'age_minutes': age,
                    'ttl_minutes': ttl_minutes,
                }
            ))
        except RepositoryError as e:
            logger.warning(f"Failed to write sync log for {domain}: {e}")

        cleared.append({
            'domain': domain,
            'lock_holder': status.lock_holder,
            'lock_acquired_at': acquired_at,
            'age_minutes': age,
        })
        logger.info(f"Cleared stale lock for {domain} (was {age} min old)")

    return {'success': True, 'cleared': cleared, 'skipped': skipped, 'ttl_minutes': ttl_minutes}


def normalize_error_message(message: Any) -> str:
    """Collapse whitespace, redact Cloudflare Ray IDs and cut to 240 chars."""
    text = str(message or '').strip()
    if not text:
        return 'EMPTY'
    text = _WHITESPACE.sub(' ', text)
    text = _RAY_ID.sub('Ray ID: <redacted>', text)
    return text[:MAX_NORMALIZED_ERROR_LENGTH]


def inspect_sync_jobs(repo: BaseSyncRepository) -> Dict[str, Any]:
    """Status counts, job samples and the most common failure messages."""
    counts = {
        STATUS_PENDING: repo.count_jobs(STATUS_PENDING),
        STATUS_IN_PROGRESS: repo.count_jobs([STATUS_IN_PROGRESS, LEGACY_STATUS_RUNNING]),
        STATUS_COMPLETED: repo.count_jobs(STATUS_COMPLETED),
        STATUS_FAILED: repo.count_jobs(STATUS_FAILED),
    }

    recent = repo.list_jobs(limit=25)
    pending = repo.list_jobs(status=STATUS_PENDING, ascending=True, limit=10)
    failed = repo.list_jobs(status=STATUS_FAILED, limit=25)

    top_errors = [
        {'error': error, 'count': count}
        for error, count in Counter(normalize_error_message(job.error_message) for job in failed).most_common(10)
    ]

    return {
        'totals': {
            'total_jobs': sum(counts.values()),
            'status_counts': counts,
        },
        'top_errors_sample_window': top_errors,
        'pending_jobs_sample': [job.to_dict() for job in pending],
        'failed_jobs_sample': [job.to_dict() for job in failed],
        'recent_jobs_sample': [job.to_dict() for job in recent],
    }
