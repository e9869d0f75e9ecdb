"""
Dispatch Sync Jobs
==================

Claims the oldest pending jobs and hands each one to the job processor.

Only one dispatcher runs at a time: the ``dispatch_sync_jobs`` row in
sync_domain_status is a lock with a TTL, taken with a compare-and-set.
Each job is claimed with a conditional update, so a job is processed by
at most one dispatcher even when two overlap after a lock takeover.

Invocations run on a bounded thread pool. Starts are spaced at least
``delay_between_jobs_seconds`` apart because the provider allows about
10 requests per minute.
"""

import logging
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from config.constants import (
    DEFAULT_DELAY_BETWEEN_JOBS_SECONDS,
    DEFAULT_DISPATCH_BATCH_SIZE,
    DEFAULT_INVOKE_TIMEOUT_SECONDS,
    DEFAULT_LOCK_TTL_MINUTES,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_STUCK_JOB_MINUTES,
    DISPATCH_LOCK_DOMAIN,
    DOMAIN_ERROR,
    DOMAIN_IDLE,
    FUNCTION_PROCESS,
    STATUS_PENDING,
)
from data.models.sync_state import SyncLogEntry
from data.repositories.base_repository import BaseSyncRepository, RepositoryError
from sync_dashboard.errors import FunctionInvocationError
from utils.timezone_utils import utc_now, utc_now_iso

logger = logging.getLogger(__name__)

# invoker(job_id, invocation_id) -> processor response body
Invoker = Callable[[str, str], Dict[str, Any]]


@dataclass
class DispatchConfig:
    batch_size: int = DEFAULT_DISPATCH_BATCH_SIZE
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    delay_between_jobs_seconds: float = DEFAULT_DELAY_BETWEEN_JOBS_SECONDS
    invoke_timeout_seconds: float = DEFAULT_INVOKE_TIMEOUT_SECONDS
    lock_ttl_minutes: float = DEFAULT_LOCK_TTL_MINUTES
    stuck_job_minutes: float = DEFAULT_STUCK_JOB_MINUTES

    @classmethod
    def from_settings(cls, settings) -> 'DispatchConfig':
        config = settings.get_dispatch_config()
        return cls(
            batch_size=int(config.get('batch_size', DEFAULT_DISPATCH_BATCH_SIZE)),
            max_concurrency=max(1, int(config.get('max_concurrency', DEFAULT_MAX_CONCURRENCY))),
            delay_between_jobs_seconds=float(config.get('delay_between_jobs_seconds', DEFAULT_DELAY_BETWEEN_JOBS_SECONDS)),
            invoke_timeout_seconds=float(config.get('invoke_timeout_seconds', DEFAULT_INVOKE_TIMEOUT_SECONDS)),
            lock_ttl_minutes=float(config.get('lock_ttl_minutes', DEFAULT_LOCK_TTL_MINUTES)),
            stuck_job_minutes=float(config.get('stuck_job_minutes', DEFAULT_STUCK_JOB_MINUTES)),
        )


@dataclass
class DispatchResult:
    success: bool
    message: Optional[str] = None
    dispatched_jobs: int = 0
    attempted: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    total_jobs: Optional[int] = None
    lock: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'success': self.success,
            'dispatched_jobs': self.dispatched_jobs,
            'attempted': self.attempted,
            'errors': self.errors,
        }
        if self.message:
            data['message'] = self.message
        if self.total_jobs is not None:
            data['total_jobs'] = self.total_jobs
        if self.lock is not None:
            data['lock'] = self.lock
        if self.error:
            data['error'] = self.error
        return data


class LocalInvoker:
    """Runs the job processor in-process."""

    def __init__(self, repo: BaseSyncRepository, handlers: Dict[str, Callable], max_retries: Optional[int] = None):
        self.repo = repo
        self.handlers = handlers
        self.max_retries = max_retries

    def __call__(self, job_id: str, invocation_id: str) -> Dict[str, Any]:
        from sync_dashboard.sync.process import process_sync_job

        kwargs = {}
        if self.max_retries is not None:
            kwargs['max_retries'] = self.max_retries
        return process_sync_job(self.repo, job_id, self.handlers, **kwargs)


class HttpInvoker:
    """POSTs ``{"job_id": ...}`` to the process-sync-job function.

    The caller's Authorization/apikey headers are forwarded when present.
    """

    def __init__(self, function_client, forward_headers: Optional[Dict[str, str]] = None,
                 timeout: Optional[float] = None):
        self.function_client = function_client
        self.forward_headers = forward_headers or {}
        self.timeout = timeout

    def __call__(self, job_id: str, invocation_id: str) -> Dict[str, Any]:
        headers = dict(self.forward_headers)
        headers['x-dispatch-invocation'] = invocation_id
        return self.function_client.invoke(FUNCTION_PROCESS, {'job_id': job_id}, headers=headers, timeout=self.timeout)


def _write_log(repo: BaseSyncRepository, level: str, message: str, details: Dict[str, Any]) -> None:
    try:
        repo.insert_sync_log(SyncLogEntry(DISPATCH_LOCK_DOMAIN, level, message, details))
    except RepositoryError as e:
        logger.warning(f"Failed to write sync log: {e}")


def acquire_dispatch_lock(repo: BaseSyncRepository, holder: str, ttl_minutes: float,
                          invocation_id: str) -> Dict[str, Any]:
    """Take the dispatch lock.

    Returns:
        Dict with ``acquired`` and ``reason`` (row_initialized, success,
        stale_cleared or already_running) plus holder details when skipped
    """
    now = utc_now()
    current = repo.get_domain_status(DISPATCH_LOCK_DOMAIN)
    was_stale = bool(current and current.is_running and current.is_stale(ttl_minutes, now))

    acquired = repo.try_acquire_domain_lock(DISPATCH_LOCK_DOMAIN, holder, now - timedelta(minutes=ttl_minutes))

    if not acquired:
        latest = repo.get_domain_status(DISPATCH_LOCK_DOMAIN) or current
        return {
            'acquired': False,
            'reason': 'already_running',
            'lock_holder': latest.lock_holder if latest else None,
            'lock_acquired_at': latest.lock_acquired_at.isoformat() if latest and latest.lock_acquired_at else None,
            'lock_age_minutes': latest.lock_age_minutes(now) if latest else 0,
        }

    if was_stale:
        age = current.lock_age_minutes(now)
        _write_log(
            repo, 'warn',
            f"Stale dispatch lock auto-cleared (was held by {current.lock_holder} for {age} min, TTL is {ttl_minutes:g} min)",
            {
                'previous_holder': current.lock_holder,
                'lock_acquired_at': current.lock_acquired_at.isoformat() if current.lock_acquired_at else None,
                'age_minutes': age,
                'invocation_id': invocation_id,
            }
        )
        return {'acquired': True, 'reason': 'stale_cleared'}

    return {'acquired': True, 'reason': 'success' if current else 'row_initialized'}


def release_dispatch_lock(repo: BaseSyncRepository, status: str, error_message: Optional[str] = None) -> None:
    updates: Dict[str, Any] = {
        'status': status,
        'lock_holder': None,
        'lock_acquired_at': None,
    }
    if status == DOMAIN_IDLE:
        updates['last_successful_at'] = utc_now_iso()
    if error_message:
        updates['last_error_message'] = error_message
        updates['last_error_at'] = utc_now_iso()
    try:
        repo.update_domain_status(DISPATCH_LOCK_DOMAIN, updates)
    except RepositoryError as e:
        logger.error(f"Failed to release dispatch lock: {e}")


def _classify_result(job_id: str, result: Any) -> Optional[Dict[str, Any]]:
    """Return an error entry for a failed processor response, None on success."""
    if isinstance(result, dict) and (result.get('error') or result.get('success') is False):
        entry = {'job_id': job_id, 'error': result.get('error') or 'Process failed'}
        if result.get('details') is not None:
            entry['details'] = result.get('details')
        return entry
    return None


def _await_invocation(future: Future, started: Dict[str, float], job_id: str, timeout: float) -> None:
    """Block until the invocation finishes or has run longer than `timeout` seconds.

    Raises:
        TimeoutError: The invocation overran its timeout
    """
    while True:
        done, _ = wait([future], timeout=0.25)
        if done:
            return
        start = started.get(job_id)
        if start is not None and time.monotonic() - start > timeout:
            raise TimeoutError(f"Timed out after {timeout:g}s")


def dispatch_sync_jobs(
    repo: BaseSyncRepository,
    invoker: Invoker,
    config: Optional[DispatchConfig] = None,
    invocation_id: Optional[str] = None,
    lock_holder: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DispatchResult:
    """Run one dispatch pass.

    Never raises: fatal errors come back as ``success=False`` so callers
    looping over dispatch keep going.
    """
    config = config or DispatchConfig()
    invocation_id = invocation_id or str(uuid.uuid4())
    holder = lock_holder or f"dispatch-sync-jobs:{invocation_id}"

    try:
        lock = acquire_dispatch_lock(repo, holder, config.lock_ttl_minutes, invocation_id)
    except RepositoryError as e:
        logger.error(f"[{invocation_id}] Dispatch error acquiring lock: {e}")
        return DispatchResult(success=False, error=str(e), errors=[{'error': str(e)}])

    if not lock['acquired']:
        _write_log(
            repo, 'info',
            f"Skipped dispatch: already running (holder={lock['lock_holder']}, age={lock['lock_age_minutes']}m)",
            {'invocation_id': invocation_id, 'lock': lock}
        )
        logger.info(f"[{invocation_id}] Dispatch already running; skipping")
        return DispatchResult(
            success=True,
            message="Dispatch already running; skipping to prevent overlap.",
            lock=lock,
        )

    try:
        result = _dispatch_locked(repo, invoker, config, invocation_id, sleep)
    except Exception as e:
        logger.error(f"[{invocation_id}] Dispatch error: {e}", exc_info=True)
        release_dispatch_lock(repo, DOMAIN_ERROR, str(e))
        return DispatchResult(success=False, error=str(e), errors=[{'error': str(e)}])

    release_dispatch_lock(repo, DOMAIN_IDLE)
    return result


def _dispatch_locked(repo: BaseSyncRepository, invoker: Invoker, config: DispatchConfig,
                     invocation_id: str, sleep: Callable[[float], None]) -> DispatchResult:
    logger.info(f"[{invocation_id}] Searching for pending jobs...")

    try:
        reset = repo.reset_stuck_jobs(utc_now() - timedelta(minutes=config.stuck_job_minutes))
        if reset:
            logger.info(f"[{invocation_id}] Reset {reset} stuck in_progress jobs to pending")
    except RepositoryError as e:
        logger.warning(f"Error resetting stuck jobs (non-fatal): {e}")

    pending = repo.fetch_pending_jobs(config.batch_size)
    logger.info(f"[{invocation_id}] Found {len(pending)} pending jobs.")

    if not pending:
        return DispatchResult(
            success=True,
            message="No pending jobs to dispatch.",
            total_jobs=repo.count_jobs(STATUS_PENDING),
        )

    errors: List[Dict[str, Any]] = []
    dispatched = 0
    started: Dict[str, float] = {}
    futures: List[tuple] = []

    def run(job_id: str) -> Dict[str, Any]:
        started[job_id] = time.monotonic()
        return invoker(job_id, invocation_id)

    def record_error(job_id: str, error: str, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        entry = {'job_id': job_id, 'error': error}
        if extra:
            entry.update(extra)
        errors.append(entry)
        _write_log(repo, 'error', message, {'invocation_id': invocation_id, 'job_id': job_id})

    executor = ThreadPoolExecutor(max_workers=config.max_concurrency, thread_name_prefix='dispatch')
    try:
        last_start: Optional[float] = None
        for index, job in enumerate(pending):
            logger.info(f"[{invocation_id}] Processing job {index + 1}/{len(pending)}: {job.id}")

            try:
                claimed = repo.claim_job(job.id)
            except RepositoryError as e:
                logger.error(f"[{invocation_id}] Error claiming job {job.id}: {e}")
                record_error(job.id, f"Claim error: {e}", f"Claim error for job {job.id}: {e}")
                continue

            if claimed is None:
                logger.info(f"[{invocation_id}] Job {job.id} was already claimed; skipping.")
                continue

            if last_start is not None and config.delay_between_jobs_seconds > 0:
                remaining = config.delay_between_jobs_seconds - (time.monotonic() - last_start)
                if remaining > 0:
                    logger.debug(f"Waiting {remaining:.1f}s before next job to respect API rate limit...")
                    sleep(remaining)
            last_start = time.monotonic()

            futures.append((job.id, executor.submit(run, job.id)))

        for job_id, future in futures:
            try:
                _await_invocation(future, started, job_id, config.invoke_timeout_seconds)
                result = future.result()
            except TimeoutError as e:
                logger.error(f"Timed out waiting for job {job_id}: {e}")
                record_error(job_id, f"Timeout: {e}", f"Invocation timeout for job {job_id}: {e}")
                continue
            except FunctionInvocationError as e:
                logger.error(f"Failed to invoke process-sync-job for job {job_id}: {e}")
                record_error(job_id, f"Invocation error: {e}", f"Invocation error for job {job_id}: {e}")
                continue
            except Exception as e:
                logger.error(f"Exception invoking process-sync-job for job {job_id}: {e}")
                record_error(job_id, f"Exception: {e}", f"Exception processing job {job_id}: {e}")
                continue

            error_entry = _classify_result(job_id, result)
            if error_entry:
                logger.error(f"process-sync-job returned error for job {job_id}: {error_entry['error']}")
                errors.append(error_entry)
                _write_log(
                    repo, 'error',
                    f"process-sync-job returned error for job {job_id}: {error_entry['error']}",
                    {'invocation_id': invocation_id, 'job_id': job_id, 'result': result}
                )
            else:
                dispatched += 1
                logger.info(f"Successfully processed job {job_id}")
    finally:
        # Timed-out invocations keep running; the stuck-job reset reclaims their rows
        executor.shutdown(wait=False)

    logger.info(f"[{invocation_id}] Dispatched {dispatched} of {len(pending)} pending jobs.")
    _write_log(
        repo, 'info',
        f"Dispatch finished: dispatched={dispatched} attempted={len(pending)} errors={len(errors)}",
        {'invocation_id': invocation_id, 'dispatched': dispatched, 'attempted': len(pending), 'errors_count': len(errors)}
    )

    return DispatchResult(success=True, dispatched_jobs=dispatched, attempted=len(pending), errors=errors)
