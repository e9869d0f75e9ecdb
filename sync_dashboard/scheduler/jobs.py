"""
Scheduled Jobs Definitions
==========================

Background jobs that keep the sync queue moving. Each job:
1. Is a function that takes no arguments
2. Handles its own error logging
3. Calls log_job_execution() and the job_executions tracking helpers
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from config.settings import get_settings
from data.repositories.repository_factory import get_repository
from sync_dashboard.scheduler.scheduler_core import log_job_execution
from sync_dashboard.sync.queue_ops import clear_stale_locks
from sync_dashboard.sync.service import run_dispatch, run_enqueue
from utils.job_tracking import mark_job_completed, mark_job_failed, mark_job_started

logger = logging.getLogger(__name__)


# Job definitions with metadata
AVAILABLE_JOBS: Dict[str, Dict[str, Any]] = {
    'enqueue_sync_jobs': {
        'name': 'Enqueue Sync Jobs',
        'description': 'Queue a sync job for stale and recently active traders',
        'default_interval_minutes': 60,
        'settings_key': 'scheduler.enqueue_interval_minutes',
        'enabled_by_default': True,
    },
    'dispatch_sync_jobs': {
        'name': 'Dispatch Sync Jobs',
        'description': 'Claim pending sync jobs and process them',
        'default_interval_minutes': 2,
        'settings_key': 'scheduler.dispatch_interval_minutes',
        'enabled_by_default': True,
    },
    'clear_stale_locks': {
        'name': 'Clear Stale Locks',
        'description': 'Release sync domain locks held longer than their TTL',
        'default_interval_minutes': 15,
        'settings_key': 'scheduler.clear_locks_interval_minutes',
        'enabled_by_default': True,
    },
}


def _run_tracked(job_id: str, work: Callable[[], Dict[str, Any]], summarize: Callable[[Dict[str, Any]], str]) -> None:
    start_time = time.time()
    target_date = datetime.now(timezone.utc).date()

    try:
        logger.info(f"Starting {job_id} job...")
        mark_job_started(job_id, target_date)

        result = work()
        duration_ms = int((time.time() - start_time) * 1000)
        message = summarize(result)

        if result.get('success', True):
            log_job_execution(job_id, success=True, message=message, duration_ms=duration_ms)
            mark_job_completed(job_id, target_date, result, duration_ms=duration_ms)
            logger.info(f"{job_id}: {message}")
        else:
            log_job_execution(job_id, success=False, message=message, duration_ms=duration_ms)
            mark_job_failed(job_id, target_date, message, duration_ms=duration_ms)
            logger.warning(f"{job_id}: {message}")

    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        message = f"Error: {str(e)}"
        log_job_execution(job_id, success=False, message=message, duration_ms=duration_ms)
        mark_job_failed(job_id, target_date, message, duration_ms=duration_ms)
        logger.error(f"{job_id} job failed: {e}", exc_info=True)


def enqueue_sync_jobs_job() -> None:
    """Queue sync jobs for stale and recently active traders."""
    def summarize(result: Dict[str, Any]) -> str:
        return result.get('error') or result.get('message', '')

    _run_tracked('enqueue_sync_jobs', run_enqueue, summarize)


def dispatch_sync_jobs_job() -> None:
    """Run one dispatch pass."""
    def summarize(result: Dict[str, Any]) -> str:
        if result.get('error'):
            return result['error']
        if result.get('message'):
            return result['message']
        return (f"Dispatched {result.get('dispatched_jobs', 0)} of {result.get('attempted', 0)} jobs, "
                f"{len(result.get('errors') or [])} errors")

    _run_tracked('dispatch_sync_jobs', run_dispatch, summarize)


def clear_stale_locks_job() -> None:
    """Release domain locks whose holder died."""
    def summarize(result: Dict[str, Any]) -> str:
        return f"Cleared {len(result.get('cleared', []))} stale locks"

    _run_tracked('clear_stale_locks', lambda: clear_stale_locks(get_repository(), cleared_by='scheduler'), summarize)


JOB_FUNCTIONS: Dict[str, Callable[[], None]] = {
    'enqueue_sync_jobs': enqueue_sync_jobs_job,
    'dispatch_sync_jobs': dispatch_sync_jobs_job,
    'clear_stale_locks': clear_stale_locks_job,
}


def get_job_interval(job_id: str) -> int:
    """Interval in minutes, from settings when configured."""
    job = AVAILABLE_JOBS[job_id]
    return int(get_settings().get(job['settings_key'], job['default_interval_minutes']))


def register_default_jobs(scheduler) -> None:
    """Register all default jobs with the scheduler.

    Called by start_scheduler() during initialization.
    """
    from apscheduler.triggers.interval import IntervalTrigger

    for job_id, job in AVAILABLE_JOBS.items():
        if not job['enabled_by_default']:
            continue
        minutes = get_job_interval(job_id)
        scheduler.add_job(
            JOB_FUNCTIONS[job_id],
            trigger=IntervalTrigger(minutes=minutes),
            id=job_id,
            name=job['name'],
            replace_existing=True
        )
        logger.info(f"Registered job: {job_id} (every {minutes} min)")
