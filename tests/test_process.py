"""
Tests for process_sync_job and retry_or_fail.

Handlers are mocks; the in-memory repository records the job state
transitions.
"""

import unittest
from unittest.mock import MagicMock

import requests

from data.repositories.memory_repository import InMemorySyncRepository
from sync_dashboard.errors import BullawareAPIError, EtoroAPIError
from sync_dashboard.sync.process import process_sync_job, retry_or_fail


class ProcessTestCase(unittest.TestCase):

    def setUp(self):
        self.repo = InMemorySyncRepository()
        self.repo.add_trader('t-1', etoro_username='alice', etoro_cid='1001')
        self.repo.add_trader('t-2', etoro_username=None, etoro_cid='2002')
        self.handler = MagicMock(return_value={'success': True, 'holdings': 3})
        self.handlers = {'deep_sync': self.handler}

    def job(self, job_id):
        return self.repo.jobs[job_id]


class TestProcessSuccess(ProcessTestCase):

    def test_completes_job(self):
        job_id = self.repo.add_job('t-1', status='in_progress')

        result = process_sync_job(self.repo, job_id, self.handlers)

        self.assertEqual(result, {
            'success': True,
            'job_id': job_id,
            'message': "Synced alice",
            'data': {'success': True, 'holdings': 3},
        })
        self.assertEqual(self.job(job_id)['status'], 'completed')
        self.assertIsNotNone(self.job(job_id)['finished_at'])
        self.assertEqual(self.handler.call_args[0][0].etoro_username, 'alice')

    def test_unclaimed_job_is_marked_in_progress_first(self):
        job_id = self.repo.add_job('t-1')
        seen = []

        def handler(trader):
            seen.append(self.job(job_id)['status'])
            return {'success': True}

        process_sync_job(self.repo, job_id, {'deep_sync': handler})

        self.assertEqual(seen, ['in_progress'])
        self.assertIsNotNone(self.job(job_id)['started_at'])

    def test_unknown_job_type_falls_back_to_deep_sync(self):
        job_id = self.repo.add_job('t-1', job_type='mystery')

        result = process_sync_job(self.repo, job_id, self.handlers)

        self.assertTrue(result['success'])
        self.handler.assert_called_once()

    def test_etoro_profile_uses_its_handler(self):
        etoro = MagicMock(return_value={'success': True})
        job_id = self.repo.add_job('t-2', job_type='etoro_profile')

        result = process_sync_job(self.repo, job_id, {'deep_sync': self.handler, 'etoro_profile': etoro})

        self.assertTrue(result['success'])
        self.assertEqual(result['message'], "Synced trader:t-2")
        etoro.assert_called_once()
        self.handler.assert_not_called()


class TestProcessValidation(ProcessTestCase):

    def test_missing_job(self):
        result = process_sync_job(self.repo, 'nope', self.handlers)
        self.assertEqual(result, {'success': False, 'error': "Job nope not found"})

    def test_missing_trader_fails_without_retry(self):
        job_id = self.repo.add_job('t-gone', retry_count=1)

        result = process_sync_job(self.repo, job_id, self.handlers)

        self.assertEqual(result, {'success': False, 'error': 'Trader missing', 'job_id': job_id})
        self.assertEqual(self.job(job_id)['status'], 'failed')
        self.assertEqual(self.job(job_id)['error_message'], 'Trader not found')
        self.assertEqual(self.job(job_id)['retry_count'], 2)
        self.handler.assert_not_called()

    def test_deep_sync_requires_username(self):
        job_id = self.repo.add_job('t-2')

        result = process_sync_job(self.repo, job_id, self.handlers)

        self.assertEqual(result['error'], 'Trader missing etoro_username')
        self.assertEqual(self.job(job_id)['status'], 'failed')

    def test_etoro_profile_requires_cid(self):
        self.repo.add_trader('t-3', etoro_username='nocid')
        job_id = self.repo.add_job('t-3', job_type='etoro_profile')

        result = process_sync_job(self.repo, job_id, {'etoro_profile': MagicMock()})

        self.assertEqual(result['error'], 'Trader missing etoro_cid')

    def test_no_handler_at_all(self):
        job_id = self.repo.add_job('t-1', job_type='mystery')

        result = process_sync_job(self.repo, job_id, {})

        self.assertEqual(result['error'], "Unsupported job type mystery")
        self.assertEqual(self.job(job_id)['error_message'], "No handler for job type mystery")


class TestProcessFailures(ProcessTestCase):

    def test_transient_handler_error_is_requeued(self):
        self.handler.side_effect = BullawareAPIError("Bullaware API error: HTTP 503", status_code=503)
        job_id = self.repo.add_job('t-1', status='in_progress', retry_count=2)

        result = process_sync_job(self.repo, job_id, self.handlers)

        self.assertFalse(result['success'])
        self.assertEqual(result['error'], 'Sync failed (requeued)')
        self.assertTrue(result['transient'])
        self.assertEqual(result['retry_count'], 3)
        job = self.job(job_id)
        self.assertEqual(job['status'], 'pending')
        self.assertIsNone(job['started_at'])
        self.assertEqual(job['retry_count'], 3)
        self.assertEqual(job['error_message'], "Bullaware API error: HTTP 503")

    def test_permanent_handler_error_fails(self):
        self.handler.side_effect = BullawareAPIError("Bullaware API error: HTTP 404", status_code=404)
        job_id = self.repo.add_job('t-1')

        result = process_sync_job(self.repo, job_id, self.handlers)

        self.assertEqual(result['error'], 'Sync failed')
        self.assertFalse(result['transient'])
        self.assertEqual(self.job(job_id)['status'], 'failed')
        self.assertEqual(self.job(job_id)['retry_count'], 1)

    def test_retries_exhausted(self):
        self.handler.side_effect = EtoroAPIError("rate limited", status_code=429)
        job_id = self.repo.add_job('t-1', retry_count=5)

        result = process_sync_job(self.repo, job_id, self.handlers, max_retries=5)

        self.assertEqual(result['error'], 'Sync failed')
        self.assertEqual(self.job(job_id)['status'], 'failed')
        self.assertEqual(self.job(job_id)['retry_count'], 6)

    def test_network_error_is_transient(self):
        self.handler.side_effect = requests.exceptions.ConnectionError("connection refused")
        job_id = self.repo.add_job('t-1')

        result = process_sync_job(self.repo, job_id, self.handlers)

        self.assertEqual(result['error'], 'Requeued after fetch error')
        self.assertTrue(result['transient'])
        self.assertEqual(self.job(job_id)['status'], 'pending')

    def test_unexpected_exception_classified_by_message(self):
        self.handler.side_effect = RuntimeError("upstream timed out")
        transient_id = self.repo.add_job('t-1')
        self.assertEqual(process_sync_job(self.repo, transient_id, self.handlers)['error'], 'Sync failed (requeued)')

        self.handler.side_effect = KeyError('items')
        permanent_id = self.repo.add_job('t-1')
        self.assertEqual(process_sync_job(self.repo, permanent_id, self.handlers)['error'], 'Sync failed')
        self.assertEqual(self.job(permanent_id)['status'], 'failed')

    def test_handler_reporting_failure(self):
        self.handler.return_value = {'success': False, 'error': 'fetch failed'}
        job_id = self.repo.add_job('t-1')

        result = process_sync_job(self.repo, job_id, self.handlers)

        self.assertEqual(result['error'], 'Sync reported failure (requeued)')
        self.assertEqual(result['details'], {'success': False, 'error': 'fetch failed'})

    def test_repository_failure_is_returned_not_raised(self):
        repo = MagicMock()
        repo.get_job.side_effect = Exception("db unreachable")

        result = process_sync_job(repo, 'job-x', self.handlers)

        self.assertEqual(result, {'success': False, 'error': "db unreachable", 'job_id': 'job-x'})


class TestRetryOrFail(unittest.TestCase):

    def setUp(self):
        self.repo = InMemorySyncRepository()
        self.job_id = self.repo.add_job('t-1', status='in_progress', started_at='2024-01-01T00:00:00+00:00')

    def test_requeue_clears_timestamps(self):
        self.assertTrue(retry_or_fail(self.repo, self.job_id, 0, "timeout", True, max_retries=5))
        job = self.repo.jobs[self.job_id]
        self.assertEqual(job['status'], 'pending')
        self.assertIsNone(job['started_at'])
        self.assertIsNone(job['finished_at'])

    def test_error_message_truncated(self):
        retry_or_fail(self.repo, self.job_id, 0, "x" * 800, False)
        self.assertEqual(len(self.repo.jobs[self.job_id]['error_message']), 500)

    def test_last_allowed_retry(self):
        self.assertTrue(retry_or_fail(self.repo, self.job_id, 4, "timeout", True, max_retries=5))
        self.assertFalse(retry_or_fail(self.repo, self.job_id, 5, "timeout", True, max_retries=5))
        self.assertEqual(self.repo.jobs[self.job_id]['status'], 'failed')


if __name__ == '__main__':
    unittest.main()
