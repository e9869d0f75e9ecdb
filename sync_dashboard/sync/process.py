"""
Process Sync Job
================

Runs one sync job: validates the trader, calls the handler for the job
type and moves the job to completed, back to pending (transient failure
with retries left) or failed.

Always returns a JSON-able dict and never raises, so a dispatcher looping
over jobs keeps going after a failure.
"""

import logging
from typing import Any, Callable, Dict, Optional

import requests

from config.constants import (
    DEFAULT_JOB_TYPE,
    DEFAULT_MAX_RETRIES,
    JOB_TYPE_ETORO_PROFILE,
    MAX_ERROR_MESSAGE_LENGTH,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
)
from data.models.trader import Trader
from data.repositories.base_repository import BaseSyncRepository
from sync_dashboard.errors import SyncHandlerError, is_transient_message
from utils.timezone_utils import utc_now_iso

logger = logging.getLogger(__name__)

# handler(trader) -> result dict; raises SyncHandlerError on provider failures
Handler = Callable[[Trader], Dict[str, Any]]


def _truncate(message: str) -> str:
    return (message or '')[:MAX_ERROR_MESSAGE_LENGTH]


def retry_or_fail(repo: BaseSyncRepository, job_id: str, retry_count: int, error_message: str,
                  transient: bool, max_retries: int = DEFAULT_MAX_RETRIES) -> bool:
    """Requeue a transient failure while retries remain, otherwise fail the job.

    Returns:
        True if the job went back to pending
    """
    next_retry = int(retry_count or 0) + 1
    can_retry = transient and next_retry <= max_retries

    if can_retry:
        repo.update_job(job_id, {
            'status': STATUS_PENDING,
            'started_at': None,
            'finished_at': None,
            'error_message': _truncate(error_message),
            'retry_count': next_retry,
        })
        logger.info(f"Job {job_id} requeued (retry {next_retry}/{max_retries})")
    else:
        repo.update_job(job_id, {
            'status': STATUS_FAILED,
            'finished_at': utc_now_iso(),
            'error_message': _truncate(error_message),
            'retry_count': next_retry,
        })
        logger.warning(f"Job {job_id} failed after {next_retry} attempt(s): {error_message}")

    return can_retry


def _fail_validation(repo: BaseSyncRepository, job_id: str, retry_count: int,
                     error_message: str, response_error: str) -> Dict[str, Any]:
    logger.error(f"{error_message} for job {job_id}")
    repo.update_job(job_id, {
        'status': STATUS_FAILED,
        'finished_at': utc_now_iso(),
        'error_message': error_message,
        'retry_count': int(retry_count or 0) + 1,
    })
    return {'success': False, 'error': response_error, 'job_id': job_id}


def _validate_trader(job_type: str, trader: Optional[Trader]) -> Optional[tuple]:
    """Return (error_message, response_error) when the job cannot run."""
    if trader is None:
        return 'Trader not found', 'Trader missing'
    if job_type == JOB_TYPE_ETORO_PROFILE:
        if not trader.etoro_cid:
            return 'Trader missing etoro_cid', 'Trader missing etoro_cid'
    elif not trader.etoro_username:
        return 'Trader missing etoro_username', 'Trader missing etoro_username'
    return None


def process_sync_job(repo: BaseSyncRepository, job_id: str, handlers: Dict[str, Handler],
                     max_retries: int = DEFAULT_MAX_RETRIES) -> Dict[str, Any]:
    """Process a single sync job.

    Args:
        repo: Repository
        job_id: Job to run
        handlers: Handler per job type; unknown types fall back to deep_sync
        max_retries: Attempts allowed for transient failures

    Returns:
        Result dict with ``success`` and either ``message``/``data`` or ``error``
    """
    logger.info(f"Received request for job_id: {job_id}")
    try:
        return _process(repo, job_id, handlers, max_retries)
    except Exception as e:
        logger.error(f"Fatal error processing job {job_id}: {e}", exc_info=True)
        return {'success': False, 'error': str(e) or 'Unknown error', 'job_id': job_id}


def _process(repo: BaseSyncRepository, job_id: str, handlers: Dict[str, Handler],
             max_retries: int) -> Dict[str, Any]:
    job = repo.get_job(job_id, with_trader=True)
    if job is None:
        logger.error(f"Job {job_id} not found")
        return {'success': False, 'error': f"Job {job_id} not found"}

    if job.status != STATUS_IN_PROGRESS:
        repo.update_job(job.id, {'status': STATUS_IN_PROGRESS, 'started_at': utc_now_iso()})

    job_type = job.job_type or DEFAULT_JOB_TYPE
    invalid = _validate_trader(job_type, job.trader)
    if invalid:
        return _fail_validation(repo, job.id, job.retry_count, *invalid)

    trader = job.trader
    handler = handlers.get(job_type) or handlers.get(DEFAULT_JOB_TYPE)
    if handler is None:
        return _fail_validation(repo, job.id, job.retry_count,
                                f"No handler for job type {job_type}", f"Unsupported job type {job_type}")

    logger.info(f"Processing {job_type} for trader_id={trader.id}")
    next_retry = job.retry_count + 1

    try:
        result = handler(trader)
    except SyncHandlerError as e:
        logger.error(f"Error running {job_type} for trader_id={trader.id}: {e.message}")
        retried = retry_or_fail(repo, job.id, job.retry_count, e.message, e.transient, max_retries)
        return {
            'success': False,
            'error': 'Sync failed (requeued)' if retried else 'Sync failed',
            'details': e.message,
            'job_id': job.id,
            'transient': e.transient,
            'retry_count': next_retry,
        }
    except (requests.exceptions.RequestException, ConnectionError) as e:
        message = f"Fetch error running {job_type}: {e}"
        logger.error(message)
        retried = retry_or_fail(repo, job.id, job.retry_count, message, True, max_retries)
        return {
            'success': False,
            'error': 'Requeued after fetch error' if retried else 'Failed after fetch error',
            'details': message,
            'job_id': job.id,
            'transient': True,
            'retry_count': next_retry,
        }
    except Exception as e:
        message = str(e) or e.__class__.__name__
        transient = is_transient_message(message)
        logger.error(f"Error running {job_type} for trader_id={trader.id}: {message}", exc_info=True)
        retried = retry_or_fail(repo, job.id, job.retry_count, message, transient, max_retries)
        return {
            'success': False,
            'error': 'Sync failed (requeued)' if retried else 'Sync failed',
            'details': message,
            'job_id': job.id,
            'transient': transient,
            'retry_count': next_retry,
        }

    if isinstance(result, dict) and result.get('success') is False:
        message = result.get('error') or 'Sync function reported failure'
        transient = is_transient_message(str(message))
        logger.error(f"{job_type} reported failure for trader_id={trader.id}: {message}")
        retried = retry_or_fail(repo, job.id, job.retry_count, str(message), transient, max_retries)
        return {
            'success': False,
            'error': 'Sync reported failure (requeued)' if retried else 'Sync reported failure',
            'details': result,
            'job_id': job.id,
            'transient': transient,
            'retry_count': next_retry,
        }

    repo.update_job(job.id, {'status': STATUS_COMPLETED, 'finished_at': utc_now_iso()})
    logger.info(f"Successfully processed job {job.id}")

    return {
        'success': True,
        'job_id': job.id,
        'message': f"Synced {trader.identity}",
        'data': result,
    }
