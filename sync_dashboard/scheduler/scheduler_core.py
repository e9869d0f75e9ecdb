"""
Scheduler Core - APScheduler Configuration and Management
==========================================================

Provides the background scheduler instance and management functions.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from config.constants import DEFAULT_LOG_TIMEZONE, JOB_EXECUTIONS_TABLE
from utils.timezone_utils import parse_timestamp

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None

# Job execution log (in-memory, last N executions)
_job_logs: Dict[str, List[Dict[str, Any]]] = {}
MAX_LOG_ENTRIES = 50


def get_scheduler() -> BackgroundScheduler:
    """Get or create the scheduler instance."""
    global _scheduler

    if _scheduler is None:
        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': ThreadPoolExecutor(max_workers=3)
        }
        job_defaults = {
            'coalesce': True,  # Combine multiple missed executions into one
            'max_instances': 1,  # Only one instance of each job at a time
            'misfire_grace_time': 60 * 5
        }

        _scheduler = BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=DEFAULT_LOG_TIMEZONE
        )

        logger.info("Created new BackgroundScheduler instance")

    return _scheduler


def start_scheduler() -> bool:
    """Start the scheduler and register default jobs.

    Returns True if started successfully, False if already running.
    """
    scheduler = get_scheduler()

    if scheduler.running:
        logger.info("Scheduler already running")
        return False

    from sync_dashboard.scheduler.jobs import register_default_jobs
    register_default_jobs(scheduler)

    scheduler.start()
    logger.info("Background scheduler started")
    return True


def shutdown_scheduler() -> None:
    """Gracefully shutdown the scheduler."""
    global _scheduler

    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=True)
        logger.info("Scheduler shutdown complete")
    _scheduler = None


def log_job_execution(job_id: str, success: bool, message: str, duration_ms: int = 0) -> None:
    """Log a job execution result."""
    if job_id not in _job_logs:
        _job_logs[job_id] = []

    log_entry = {
        'timestamp': datetime.now(timezone.utc),
        'success': success,
        'message': message,
        'duration_ms': duration_ms
    }

    _job_logs[job_id].insert(0, log_entry)

    # Trim old entries
    if len(_job_logs[job_id]) > MAX_LOG_ENTRIES:
        _job_logs[job_id] = _job_logs[job_id][:MAX_LOG_ENTRIES]


def _read_execution_rows(job_id: str, limit: int) -> List[Dict[str, Any]]:
    """Finished runs recorded in job_executions, newest first."""
    from utils.job_tracking import is_tracking_enabled
    if not is_tracking_enabled():
        return []

    from sync_dashboard.supabase_client import SupabaseClient
    client = SupabaseClient(use_service_role=True)
    result = client.supabase.table(JOB_EXECUTIONS_TABLE)\
        .select("*")\
        .eq("job_name", job_id)\
        .in_("status", ["success", "failed"])\
        .order("completed_at", desc=True)\
        .limit(limit)\
        .execute()

    logs = []
    for record in result.data or []:
        timestamp = parse_timestamp(record.get('completed_at')) or datetime.now(timezone.utc)
        success = record.get('status') == 'success'
        message = record.get('error_message') or ("Completed successfully" if success else "Job failed")
        logs.append({
            'timestamp': timestamp,
            'success': success,
            'message': message,
            'duration_ms': record.get('duration_ms') or 0
        })
    return logs


def get_job_logs(job_id: str, limit: int = 10) -> List[Dict[str, Any]]:
    """Get recent execution logs for a job.

    Merges the persistent job_executions rows with this process's
    in-memory log, dropping entries within a second of each other.
    """
    logs: List[Dict[str, Any]] = []
    try:
        logs = _read_execution_rows(job_id, limit)
    except Exception as e:
        logger.warning(f"Failed to read job logs from database for {job_id}: {e}")

    for mem_log in _job_logs.get(job_id, []):
        mem_ts = mem_log['timestamp']
        if not any(abs((mem_ts - existing['timestamp']).total_seconds()) < 1 for existing in logs):
            logs.append(mem_log)

    logs.sort(key=lambda x: x['timestamp'], reverse=True)
    return logs[:limit]


def get_job_status(job_id: str) -> Optional[Dict[str, Any]]:
    """Get status of a specific job."""
    scheduler = get_scheduler()
    job = scheduler.get_job(job_id)

    if not job:
        return None

    return {
        'id': job.id,
        'name': job.name or job.id,
        'next_run': job.next_run_time,
        'is_paused': job.next_run_time is None,
        'trigger': str(job.trigger),
        'recent_logs': get_job_logs(job.id, limit=5)
    }


def get_all_jobs_status() -> List[Dict[str, Any]]:
    """Get status of all scheduled jobs."""
    scheduler = get_scheduler()
    statuses = (get_job_status(job.id) for job in scheduler.get_jobs())
    return [status for status in statuses if status]


def run_job_now(job_id: str) -> bool:
    """Trigger a job to run immediately on the scheduler's thread pool.

    Returns True if job was scheduled, False if job not found.
    """
    scheduler = get_scheduler()
    job = scheduler.get_job(job_id)

    if not job:
        logger.warning(f"Job not found: {job_id}")
        return False

    try:
        logger.info(f"Scheduling job for immediate async execution: {job_id}")
        scheduler.add_job(
            job.func,
            trigger='date',  # Run once, now
            id=f"{job_id}_manual_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}",
            name=f"Manual: {job.name or job_id}",
            replace_existing=False
        )
        return True
    except Exception as e:
        logger.error(f"Error scheduling job {job_id}: {e}")
        return False


def pause_job(job_id: str) -> bool:
    """Pause a scheduled job."""
    scheduler = get_scheduler()
    job = scheduler.get_job(job_id)

    if not job:
        return False

    scheduler.pause_job(job_id)
    logger.info(f"Paused job: {job_id}")
    return True


def resume_job(job_id: str) -> bool:
    """Resume a paused job."""
    scheduler = get_scheduler()
    job = scheduler.get_job(job_id)

    if not job:
        return False

    scheduler.resume_job(job_id)
    logger.info(f"Resumed job: {job_id}")
    return True
