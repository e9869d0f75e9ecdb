"""
Job Execution Tracking Utilities
================================

Record scheduler job runs in the job_executions table so a crashed or
stuck scheduled run can be spotted from the database.

One row per job and day; each run overwrites the day's row.

Usage:
    from utils.job_tracking import mark_job_started, mark_job_completed

    mark_job_started('dispatch_sync_jobs', target_date)
    try:
        # ... dispatch ...
        mark_job_completed('dispatch_sync_jobs', target_date, {'dispatched_jobs': 3})
    except Exception as e:
        mark_job_failed('dispatch_sync_jobs', target_date, str(e))
        raise

Tracking failures are logged and never fail the job itself.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from config.constants import JOB_EXECUTIONS_TABLE
from config.settings import get_settings
from sync_dashboard.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

ON_CONFLICT = 'job_name,target_date'


def is_tracking_enabled() -> bool:
    """Executions are only recorded against the Supabase backend."""
    return get_settings().get_repository_type() == 'supabase'


def _upsert(data: Dict[str, Any]) -> None:
    client = SupabaseClient(use_service_role=True)
    client.supabase.table(JOB_EXECUTIONS_TABLE).upsert(data, on_conflict=ON_CONFLICT).execute()


def mark_job_started(job_name: str, target_date: date) -> None:
    """
    Mark a job as started (status='running').

    Args:
        job_name: Name of the job (e.g., 'dispatch_sync_jobs')
        target_date: Date of the run
    """
    if not is_tracking_enabled():
        return
    try:
        _upsert({
            'job_name': job_name,
            'target_date': target_date.isoformat(),
            'status': 'running',
            'started_at': datetime.now(timezone.utc).isoformat(),
            'completed_at': None,
            'error_message': None,
        })
        logger.debug(f"Marked job '{job_name}' as started for {target_date}")
    except Exception as e:
        logger.warning(f"Failed to mark job started: {e}")


def mark_job_completed(
    job_name: str,
    target_date: date,
    result: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[int] = None
) -> None:
    """
    Mark a job as successfully completed.

    Args:
        job_name: Name of the job
        target_date: Date of the run
        result: Summary of what the run did, stored as JSON
        duration_ms: Execution duration in milliseconds (optional)
    """
    if not is_tracking_enabled():
        return
    try:
        data = {
            'job_name': job_name,
            'target_date': target_date.isoformat(),
            'status': 'success',
            'completed_at': datetime.now(timezone.utc).isoformat(),
            'result': result or {},
        }
        if duration_ms is not None:
            data['duration_ms'] = duration_ms
        _upsert(data)
        logger.debug(f"Marked job '{job_name}' as completed for {target_date}")
    except Exception as e:
        logger.warning(f"Failed to mark job completed: {e}")


def mark_job_failed(
    job_name: str,
    target_date: date,
    error: str,
    duration_ms: Optional[int] = None
) -> None:
    """
    Mark a job as failed with error message.

    Args:
        job_name: Name of the job
        target_date: Date of the run
        error: Error message
        duration_ms: Execution duration in milliseconds (optional)
    """
    if not is_tracking_enabled():
        return
    try:
        data = {
            'job_name': job_name,
            'target_date': target_date.isoformat(),
            'status': 'failed',
            'completed_at': datetime.now(timezone.utc).isoformat(),
            'error_message': error[:500]
        }
        if duration_ms is not None:
            data['duration_ms'] = duration_ms
        _upsert(data)
        logger.debug(f"Marked job '{job_name}' as failed for {target_date}")
    except Exception as e:
        logger.warning(f"Failed to mark job as failed: {e}")
