"""
Background Task Scheduler
=========================

Uses APScheduler to run the sync pipeline on intervals inside the web
service process.

Usage:
    from sync_dashboard.scheduler import get_scheduler, start_scheduler

    # Start scheduler (call once at app startup)
    start_scheduler()

    # Get scheduler for management
    scheduler = get_scheduler()
    jobs = scheduler.get_jobs()
"""

from sync_dashboard.scheduler.scheduler_core import (
    get_scheduler,
    start_scheduler,
    shutdown_scheduler,
    get_job_status,
    get_job_logs,
    run_job_now,
    pause_job,
    resume_job,
    get_all_jobs_status
)

from sync_dashboard.scheduler.jobs import (
    AVAILABLE_JOBS,
    register_default_jobs,
    enqueue_sync_jobs_job,
    dispatch_sync_jobs_job,
    clear_stale_locks_job,
)

__all__ = [
    'get_scheduler',
    'start_scheduler',
    'shutdown_scheduler',
    'get_job_status',
    'get_job_logs',
    'run_job_now',
    'pause_job',
    'resume_job',
    'get_all_jobs_status',
    'AVAILABLE_JOBS',
    'register_default_jobs',
    'enqueue_sync_jobs_job',
    'dispatch_sync_jobs_job',
    'clear_stale_locks_job',
]
