"""
Tests for the Flask routes: function endpoints under /functions/v1 and
the admin API.

The app runs against the in-memory repository from conftest; handlers
that would call Bullaware are patched out.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest

from sync_dashboard.errors import FunctionInvocationError
from sync_dashboard.log_handler import get_log_handler

ANON_KEY = "test-anon-key"


@pytest.fixture
def ok_handlers():
    handlers = {'deep_sync': MagicMock(return_value={'success': True}),
                'etoro_profile': MagicMock(return_value={'success': True})}
    with patch('sync_dashboard.sync.service.build_handlers', return_value=handlers):
        yield handlers


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok', 'version': '1.0.0', 'repository': 'memory'}


def test_unknown_route_404(client):
    assert client.get('/functions/v1/not-a-function').status_code == 404


class TestAuth:

    @pytest.mark.parametrize('path', [
        '/functions/v1/enqueue-sync-jobs',
        '/functions/v1/dispatch-sync-jobs',
        '/functions/v1/process-sync-job',
        '/functions/v1/force-process-queue',
        '/functions/v1/clear-stale-locks',
        '/functions/v1/inspect-sync-jobs',
    ])
    def test_missing_key_is_rejected(self, client, path):
        response = client.post(path, json={})
        assert response.status_code == 401
        assert response.get_json() == {'success': False, 'error': 'Unauthorized'}

    def test_wrong_key_is_rejected(self, client):
        response = client.post('/functions/v1/inspect-sync-jobs', headers={'Authorization': 'Bearer nope'})
        assert response.status_code == 401

    def test_anon_key_in_apikey_header(self, client):
        response = client.post('/functions/v1/inspect-sync-jobs', headers={'apikey': ANON_KEY})
        assert response.status_code == 200

    def test_preflight_skips_auth(self, client):
        response = client.options('/functions/v1/dispatch-sync-jobs', headers={
            'Origin': 'https://app.example.com',
            'Access-Control-Request-Method': 'POST',
            'Access-Control-Request-Headers': 'authorization, x-dispatch-invocation',
        })
        assert response.status_code == 200
        assert response.headers.get('Access-Control-Allow-Origin') == '*'

    def test_no_configured_keys_rejects_everything(self, client, monkeypatch, auth_headers):
        for var in ('SUPABASE_SECRET_KEY', 'SUPABASE_SERVICE_ROLE_KEY', 'SUPABASE_PUBLISHABLE_KEY', 'SUPABASE_ANON_KEY'):
            monkeypatch.delenv(var, raising=False)
        response = client.post('/functions/v1/inspect-sync-jobs', headers=auth_headers)
        assert response.status_code == 401


class TestEnqueueRoute:

    def test_enqueue_default_selection(self, client, auth_headers, repo):
        response = client.post('/functions/v1/enqueue-sync-jobs', json={}, headers=auth_headers)

        data = response.get_json()
        assert response.status_code == 200
        assert data['success'] is True
        assert data['enqueued_count'] == 2
        assert repo.count_jobs('pending') == 2

    def test_enqueue_specific_ids_with_empty_body(self, client, auth_headers, repo):
        response = client.post('/functions/v1/enqueue-sync-jobs', json={'trader_ids': ['t-carol'],
                                                                         'job_type': 'etoro_profile'},
                               headers=auth_headers)

        assert response.get_json()['enqueued_count'] == 1
        assert [row['job_type'] for row in repo.jobs.values()] == ['etoro_profile']

    def test_invalid_json_body_is_treated_as_empty(self, client, auth_headers):
        response = client.post('/functions/v1/enqueue-sync-jobs', data='not json',
                               headers={**auth_headers, 'Content-Type': 'application/json'})
        assert response.status_code == 200

    def test_sync_traders_failure_returns_500(self, client, auth_headers):
        error = FunctionInvocationError("HTTP 500 invoking sync-traders", status_code=500, body={'error': 'down'})
        with patch('sync_dashboard.routes.functions_routes.run_enqueue', side_effect=error):
            response = client.post('/functions/v1/enqueue-sync-jobs', json={'sync_traders': True},
                                   headers=auth_headers)

        assert response.status_code == 500
        assert response.get_json() == {'success': False, 'error': 'Failed to invoke sync-traders',
                                       'details': {'error': 'down'}}

    def test_unexpected_error_returns_500(self, client, auth_headers):
        with patch('sync_dashboard.routes.functions_routes.run_enqueue', side_effect=RuntimeError("db gone")):
            response = client.post('/functions/v1/enqueue-sync-jobs', json={}, headers=auth_headers)

        assert response.status_code == 500
        assert response.get_json()['enqueued_count'] == 0


class TestDispatchAndProcessRoutes:

    def test_dispatch_runs_pending_jobs(self, client, auth_headers, repo, ok_handlers):
        job_id = repo.add_job('t-alice')

        response = client.post('/functions/v1/dispatch-sync-jobs',
                               headers={**auth_headers, 'x-dispatch-invocation': 'inv-42'})

        data = response.get_json()
        assert response.status_code == 200
        assert data['success'] is True
        assert data['dispatched_jobs'] == 1
        assert repo.jobs[job_id]['status'] == 'completed'
        assert any(log['details'].get('invocation_id') == 'inv-42' for log in repo.sync_logs)

    def test_dispatch_failure_still_returns_200(self, client, auth_headers):
        with patch('sync_dashboard.routes.functions_routes.run_dispatch', side_effect=RuntimeError("boom")):
            response = client.post('/functions/v1/dispatch-sync-jobs', headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()['success'] is False

    def test_process_requires_job_id(self, client, auth_headers):
        response = client.post('/functions/v1/process-sync-job', json={}, headers=auth_headers)
        assert response.status_code == 400
        assert response.get_json() == {'error': 'Missing job_id'}

    def test_process_job(self, client, auth_headers, repo, ok_handlers):
        job_id = repo.add_job('t-bob')

        response = client.post('/functions/v1/process-sync-job', json={'job_id': job_id}, headers=auth_headers)

        data = response.get_json()
        assert response.status_code == 200
        assert data['success'] is True
        assert data['message'] == 'Synced bob'
        ok_handlers['deep_sync'].assert_called_once()

    def test_process_unknown_job_returns_200(self, client, auth_headers, ok_handlers):
        response = client.post('/functions/v1/process-sync-job', json={'job_id': 'missing'}, headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json() == {'success': False, 'error': 'Job missing not found'}


class TestMaintenanceRoutes:

    def test_force_process_queue(self, client, auth_headers, repo, ok_handlers):
        repo.add_job('t-alice')
        repo.add_job('t-bob')

        response = client.post('/functions/v1/force-process-queue', json={'max_iterations': 3, 'delay_ms': 1},
                               headers=auth_headers)

        data = response.get_json()
        assert response.status_code == 200
        assert data['message'] == 'Force processing complete'
        assert data['summary']['final_pending'] == 0
        assert data['summary']['jobs_cleared'] == 2

    def test_clear_stale_locks(self, client, auth_headers, repo):
        repo.set_domain_status('stock_data', status='running', lock_holder='x',
                               lock_acquired_at='2020-01-01T00:00:00+00:00')

        response = client.post('/functions/v1/clear-stale-locks',
                               json={'domains': ['stock_data'], 'cleared_by': 'tests'}, headers=auth_headers)

        data = response.get_json()
        assert data['success'] is True
        assert data['cleared'][0]['domain'] == 'stock_data'
        assert repo.domains['stock_data']['last_error_message'].startswith("Stale lock cleared by tests")

    def test_inspect_via_get(self, client, auth_headers, repo):
        repo.add_job('t-alice', status='failed', error_message='HTTP 503')

        response = client.get('/functions/v1/inspect-sync-jobs', headers=auth_headers)

        data = response.get_json()
        assert response.status_code == 200
        assert data['totals']['status_counts']['failed'] == 1
        assert data['top_errors_sample_window'] == [{'error': 'HTTP 503', 'count': 1}]


class TestAdminRoutes:

    def test_sync_status(self, client, auth_headers, repo):
        repo.set_domain_status('dispatch_sync_jobs', status='idle')
        with patch('sync_dashboard.routes.admin_routes.get_all_jobs_status', return_value=[]):
            response = client.get('/api/admin/sync/status', headers=auth_headers)

        data = response.get_json()
        assert response.status_code == 200
        assert data['scheduler_jobs'] == []
        assert data['domains'][-1]['domain'] == 'dispatch_sync_jobs'
        assert data['domains'][-1]['status'] == 'idle'
        assert data['domains'][0] == {'domain': 'discussion_feed', 'status': None}
        assert 'totals' in data['queue']

    def test_sync_status_requires_auth(self, client):
        assert client.get('/api/admin/sync/status').status_code == 401

    def test_logs_newest_first_with_filters(self, client, auth_headers):
        handler = get_log_handler()
        handler.clear()
        for level, msg in [(logging.INFO, 'first dispatch'), (logging.ERROR, 'second dispatch'),
                           (logging.INFO, 'unrelated')]:
            handler.handle(logging.makeLogRecord({'name': 'sync_dashboard.sync.dispatch', 'levelno': level,
                                                  'levelname': logging.getLevelName(level), 'msg': msg}))

        response = client.get('/api/admin/logs?search=dispatch', headers=auth_headers)
        data = response.get_json()
        assert data['count'] == 2
        assert [log['message'] for log in data['logs']] == ['second dispatch', 'first dispatch']

        response = client.get('/api/admin/logs?level=ERROR', headers=auth_headers)
        assert [log['message'] for log in response.get_json()['logs']] == ['second dispatch']
        handler.clear()

    def test_scheduler_job_actions(self, client, auth_headers):
        with patch('sync_dashboard.routes.admin_routes.pause_job', return_value=True) as pause:
            response = client.post('/api/admin/scheduler/jobs/dispatch_sync_jobs/pause', headers=auth_headers)
        assert response.status_code == 200
        pause.assert_called_once_with('dispatch_sync_jobs')

        with patch('sync_dashboard.routes.admin_routes.run_job_now', return_value=False):
            response = client.post('/api/admin/scheduler/jobs/nope/run', headers=auth_headers)
        assert response.status_code == 404

        response = client.post('/api/admin/scheduler/jobs/dispatch_sync_jobs/explode', headers=auth_headers)
        assert response.status_code == 400

    def test_cache_endpoints(self, client, auth_headers):
        assert client.get('/api/admin/cache', headers=auth_headers).get_json()['backend'] == 'NullCache'
        assert client.post('/api/admin/cache/clear', headers=auth_headers).get_json() == {'success': True}
