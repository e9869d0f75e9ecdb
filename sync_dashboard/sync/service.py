"""
Sync Service
============

Wires the pipeline functions to settings, the repository container and
the API clients. Routes, scheduler jobs and the CLI go through here so
each entry point runs the same configuration.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from config.constants import DEFAULT_FORCE_DELAY_SECONDS, DEFAULT_FORCE_MAX_ITERATIONS
from config.settings import Settings, get_settings
from data.repositories.base_repository import BaseSyncRepository
from data.repositories.repository_factory import get_repository
from sync_dashboard.function_client import FunctionClient
from sync_dashboard.sync.dispatch import DispatchConfig, HttpInvoker, LocalInvoker, dispatch_sync_jobs
from sync_dashboard.sync.enqueue import enqueue_sync_jobs, sync_traders_then_enqueue
from sync_dashboard.sync.process import process_sync_job
from sync_dashboard.sync.queue_ops import force_process_queue
from sync_dashboard.sync.trader_sync import build_handlers

logger = logging.getLogger(__name__)


def _resolve(repo: Optional[BaseSyncRepository], settings: Optional[Settings]):
    return repo or get_repository(), settings or get_settings()


def build_function_client(settings: Settings) -> FunctionClient:
    dispatch_config = settings.get_dispatch_config()
    return FunctionClient(
        settings.get_functions_base_url(),
        timeout=dispatch_config.get('invoke_timeout_seconds'),
    )


def build_invoker(repo: BaseSyncRepository, settings: Settings,
                  forward_headers: Optional[Dict[str, str]] = None):
    """Local invoker by default; ``dispatch.invoke_mode = http`` posts to process-sync-job."""
    mode = settings.get('dispatch.invoke_mode', 'local')
    if mode == 'http':
        client = build_function_client(settings)
        return HttpInvoker(client, forward_headers=forward_headers)
    if mode != 'local':
        logger.warning(f"Unknown dispatch.invoke_mode '{mode}', using local")
    return LocalInvoker(repo, build_handlers(repo, settings), max_retries=settings.get_max_retries())


def run_enqueue(repo: Optional[BaseSyncRepository] = None, settings: Optional[Settings] = None,
                trader_ids: Optional[Iterable[str]] = None, force: bool = False,
                hours_stale: Optional[float] = None, hours_active: Optional[float] = None,
                job_type: Optional[str] = None, sync_traders: bool = False) -> Dict[str, Any]:
    repo, settings = _resolve(repo, settings)
    config = settings.get_enqueue_config()
    kwargs: Dict[str, Any] = {
        'trader_ids': trader_ids,
        'force': force,
        'hours_stale': hours_stale if hours_stale is not None else config.get('hours_stale'),
        'hours_active': hours_active if hours_active is not None else config.get('hours_active'),
        'batch_size': config.get('batch_size'),
    }
    if job_type:
        kwargs['job_type'] = job_type

    if sync_traders:
        return sync_traders_then_enqueue(repo, build_function_client(settings), **kwargs).to_dict()
    return enqueue_sync_jobs(repo, **kwargs).to_dict()


def run_dispatch(repo: Optional[BaseSyncRepository] = None, settings: Optional[Settings] = None,
                 invocation_id: Optional[str] = None, forward_headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    repo, settings = _resolve(repo, settings)
    invoker = build_invoker(repo, settings, forward_headers)
    result = dispatch_sync_jobs(
        repo,
        invoker,
        DispatchConfig.from_settings(settings),
        invocation_id=invocation_id,
    )
    return result.to_dict()


def run_process(job_id: str, repo: Optional[BaseSyncRepository] = None,
                settings: Optional[Settings] = None) -> Dict[str, Any]:
    repo, settings = _resolve(repo, settings)
    return process_sync_job(repo, job_id, build_handlers(repo, settings), max_retries=settings.get_max_retries())


def run_force_process(repo: Optional[BaseSyncRepository] = None, settings: Optional[Settings] = None,
                      max_iterations: int = DEFAULT_FORCE_MAX_ITERATIONS,
                      delay_seconds: float = DEFAULT_FORCE_DELAY_SECONDS) -> Dict[str, Any]:
    repo, settings = _resolve(repo, settings)
    invoker = build_invoker(repo, settings)
    config = DispatchConfig.from_settings(settings)

    def dispatch_once() -> Dict[str, Any]:
        return dispatch_sync_jobs(repo, invoker, config).to_dict()

    return force_process_queue(repo, dispatch_once, max_iterations=max_iterations, delay_seconds=delay_seconds)
