"""
Tests for dispatch_sync_jobs.

Invokers are plain callables so the tests drive success, processor
errors, invocation failures and timeouts without any HTTP.
"""

import threading
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from data.repositories.base_repository import RepositoryError
from sync_dashboard.errors import FunctionInvocationError
from sync_dashboard.sync.dispatch import (
    DispatchConfig,
    HttpInvoker,
    acquire_dispatch_lock,
    dispatch_sync_jobs,
)
from utils.timezone_utils import utc_now

DOMAIN = 'dispatch_sync_jobs'


@pytest.fixture
def config():
    return DispatchConfig(delay_between_jobs_seconds=0, invoke_timeout_seconds=5)


def ok_invoker(job_id, invocation_id):
    return {'success': True, 'job_id': job_id}


def _messages(repo, level=None):
    return [log['message'] for log in repo.sync_logs if level is None or log['level'] == level]


def test_no_pending_jobs(repo, config):
    result = dispatch_sync_jobs(repo, ok_invoker, config)

    assert result.to_dict() == {
        'success': True,
        'message': "No pending jobs to dispatch.",
        'dispatched_jobs': 0,
        'attempted': 0,
        'errors': [],
        'total_jobs': 0,
    }
    status = repo.get_domain_status(DOMAIN)
    assert status.status == 'idle'
    assert status.lock_holder is None
    assert status.last_successful_at is not None


def test_dispatches_oldest_first(repo, config):
    newer = repo.add_job('t-bob')
    older = repo.add_job('t-alice', created_at=(utc_now() - timedelta(hours=1)).isoformat())
    calls = []

    def invoker(job_id, invocation_id):
        calls.append((job_id, invocation_id))
        return {'success': True}

    result = dispatch_sync_jobs(repo, invoker, config, invocation_id='inv-1')

    assert result.success is True
    assert result.dispatched_jobs == 2
    assert result.attempted == 2
    assert calls == [(older, 'inv-1'), (newer, 'inv-1')]
    assert repo.jobs[older]['status'] == 'in_progress'
    assert "Dispatch finished: dispatched=2 attempted=2 errors=0" in _messages(repo, 'info')


def test_batch_size_limits_dispatch(repo):
    for _ in range(4):
        repo.add_job('t-alice')

    result = dispatch_sync_jobs(repo, ok_invoker, DispatchConfig(batch_size=3, delay_between_jobs_seconds=0))

    assert result.attempted == 3
    assert repo.count_jobs('pending') == 1


def test_skips_when_lock_is_held(repo, config):
    repo.set_domain_status(DOMAIN, status='running', lock_holder='other',
                           lock_acquired_at=(utc_now() - timedelta(minutes=2)).isoformat())
    job_id = repo.add_job('t-alice')
    invoker = MagicMock()

    result = dispatch_sync_jobs(repo, invoker, config).to_dict()

    assert result['success'] is True
    assert result['message'] == "Dispatch already running; skipping to prevent overlap."
    assert result['lock']['reason'] == 'already_running'
    assert result['lock']['lock_holder'] == 'other'
    assert result['lock']['lock_age_minutes'] == 2
    invoker.assert_not_called()
    assert repo.jobs[job_id]['status'] == 'pending'
    assert repo.get_domain_status(DOMAIN).lock_holder == 'other'


def test_stale_lock_is_taken_over(repo, config):
    repo.set_domain_status(DOMAIN, status='running', lock_holder='crashed',
                           lock_acquired_at=(utc_now() - timedelta(minutes=12)).isoformat())

    result = dispatch_sync_jobs(repo, ok_invoker, config)

    assert result.success is True
    assert result.message == "No pending jobs to dispatch."
    warnings = _messages(repo, 'warn')
    assert len(warnings) == 1
    assert warnings[0].startswith("Stale dispatch lock auto-cleared (was held by crashed for 12 min")
    assert repo.get_domain_status(DOMAIN).status == 'idle'


def test_acquire_reports_row_initialized(repo):
    lock = acquire_dispatch_lock(repo, 'me', 5, 'inv')
    assert lock == {'acquired': True, 'reason': 'row_initialized'}

    repo.update_domain_status(DOMAIN, {'status': 'idle'})
    assert acquire_dispatch_lock(repo, 'me', 5, 'inv')['reason'] == 'success'


def test_job_claimed_elsewhere_is_skipped(repo, config):
    taken = repo.add_job('t-alice', created_at=(utc_now() - timedelta(minutes=5)).isoformat())
    free = repo.add_job('t-bob')
    real_claim = repo.claim_job
    invoker = MagicMock(return_value={'success': True})

    def claim(job_id):
        if job_id == taken:
            # Another dispatcher claimed it between fetch and claim
            real_claim(job_id)
            return None
        return real_claim(job_id)

    with patch.object(repo, 'claim_job', side_effect=claim):
        result = dispatch_sync_jobs(repo, invoker, config)

    assert result.dispatched_jobs == 1
    assert result.attempted == 2
    assert result.errors == []
    invoker.assert_called_once()
    assert invoker.call_args[0][0] == free


def test_claim_error_is_recorded(repo, config):
    job_id = repo.add_job('t-alice')

    with patch.object(repo, 'claim_job', side_effect=RepositoryError("db down")):
        result = dispatch_sync_jobs(repo, ok_invoker, config)

    assert result.success is True
    assert result.errors == [{'job_id': job_id, 'error': "Claim error: db down"}]
    assert f"Claim error for job {job_id}: db down" in _messages(repo, 'error')


def test_processor_errors_are_collected(repo, config):
    first = repo.add_job('t-alice', created_at=(utc_now() - timedelta(minutes=3)).isoformat())
    second = repo.add_job('t-bob', created_at=(utc_now() - timedelta(minutes=2)).isoformat())
    third = repo.add_job('t-carol', created_at=(utc_now() - timedelta(minutes=1)).isoformat())

    def invoker(job_id, invocation_id):
        if job_id == first:
            return {'success': False, 'error': 'Sync failed', 'details': 'HTTP 404'}
        if job_id == second:
            raise FunctionInvocationError("HTTP 502 invoking process-sync-job", status_code=502)
        raise ValueError("boom")

    result = dispatch_sync_jobs(repo, invoker, config)

    assert result.success is True
    assert result.dispatched_jobs == 0
    assert result.errors == [
        {'job_id': first, 'error': 'Sync failed', 'details': 'HTTP 404'},
        {'job_id': second, 'error': "Invocation error: HTTP 502 invoking process-sync-job"},
        {'job_id': third, 'error': "Exception: boom"},
    ]
    assert len(_messages(repo, 'error')) == 3
    assert "Dispatch finished: dispatched=0 attempted=3 errors=3" in _messages(repo, 'info')


def test_invocation_timeout(repo):
    job_id = repo.add_job('t-alice')
    release = threading.Event()

    def slow_invoker(job_id, invocation_id):
        release.wait(5)
        return {'success': True}

    try:
        result = dispatch_sync_jobs(
            repo, slow_invoker,
            DispatchConfig(delay_between_jobs_seconds=0, invoke_timeout_seconds=0.3)
        )
    finally:
        release.set()

    assert result.success is True
    assert result.dispatched_jobs == 0
    assert result.errors[0]['job_id'] == job_id
    assert result.errors[0]['error'].startswith("Timeout:")


def test_pacing_between_job_starts(repo):
    for _ in range(3):
        repo.add_job('t-alice')
    sleeps = []

    result = dispatch_sync_jobs(
        repo, ok_invoker,
        DispatchConfig(delay_between_jobs_seconds=6),
        sleep=sleeps.append
    )

    assert result.dispatched_jobs == 3
    # No wait before the first start
    assert len(sleeps) == 2
    assert all(0 < s <= 6 for s in sleeps)


def test_stuck_jobs_are_reset_before_fetch(repo, config):
    stuck = repo.add_job('t-alice', status='in_progress',
                         started_at=(utc_now() - timedelta(minutes=20)).isoformat())

    result = dispatch_sync_jobs(repo, ok_invoker, config)

    assert result.dispatched_jobs == 1
    assert repo.jobs[stuck]['status'] == 'in_progress'


def test_fatal_error_releases_lock_with_error(repo, config):
    with patch.object(repo, 'fetch_pending_jobs', side_effect=RepositoryError("relation does not exist")):
        result = dispatch_sync_jobs(repo, ok_invoker, config).to_dict()

    assert result['success'] is False
    assert result['error'] == "relation does not exist"
    status = repo.get_domain_status(DOMAIN)
    assert status.status == 'error'
    assert status.lock_holder is None
    assert status.last_error_message == "relation does not exist"


def test_sync_log_failures_do_not_abort(repo, config):
    repo.add_job('t-alice')

    with patch.object(repo, 'insert_sync_log', side_effect=RepositoryError("logs unavailable")):
        result = dispatch_sync_jobs(repo, ok_invoker, config)

    assert result.success is True
    assert result.dispatched_jobs == 1


def test_http_invoker_forwards_headers():
    client = MagicMock()
    client.invoke.return_value = {'success': True}
    invoker = HttpInvoker(client, forward_headers={'Authorization': 'Bearer abc'}, timeout=30)

    assert invoker('job-1', 'inv-9') == {'success': True}
    client.invoke.assert_called_once_with(
        'process-sync-job', {'job_id': 'job-1'},
        headers={'Authorization': 'Bearer abc', 'x-dispatch-invocation': 'inv-9'},
        timeout=30
    )


def test_config_from_settings():
    settings = MagicMock()
    settings.get_dispatch_config.return_value = {'batch_size': '4', 'max_concurrency': 0,
                                                 'delay_between_jobs_seconds': 1}
    config = DispatchConfig.from_settings(settings)

    assert config.batch_size == 4
    assert config.max_concurrency == 1
    assert config.delay_between_jobs_seconds == 1.0
    assert config.lock_ttl_minutes == 5
