"""Sync job pipeline: enqueue, dispatch, process and queue maintenance."""

from .enqueue import EnqueueResult, enqueue_sync_jobs, sync_traders_then_enqueue
from .dispatch import DispatchConfig, DispatchResult, HttpInvoker, LocalInvoker, dispatch_sync_jobs
from .process import process_sync_job, retry_or_fail
from .queue_ops import clear_stale_locks, force_process_queue, inspect_sync_jobs

__all__ = [
    'EnqueueResult',
    'enqueue_sync_jobs',
    'sync_traders_then_enqueue',
    'DispatchConfig',
    'DispatchResult',
    'HttpInvoker',
    'LocalInvoker',
    'dispatch_sync_jobs',
    'process_sync_job',
    'retry_or_fail',
    'clear_stale_locks',
    'force_process_queue',
    'inspect_sync_jobs',
]
