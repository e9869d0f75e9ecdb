"""
Tests for SupabaseSyncRepository against a mocked supabase-py client.

The query builder is a single chainable MagicMock: every filter returns
the same builder, and ``execute`` yields the queued responses.
"""

import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from data.models.trader import Holding
from data.repositories.base_repository import RepositoryError
from data.repositories.supabase_repository import SupabaseSyncRepository, _iso

CHAIN_METHODS = ['select', 'update', 'insert', 'upsert', 'delete', 'eq', 'neq', 'in_', 'lt', 'lte',
                 'gt', 'is_', 'or_', 'order', 'limit', 'range']


def _response(data=None, count=None):
    response = MagicMock()
    response.data = data
    response.count = count
    return response


class SupabaseRepositoryTestCase(unittest.TestCase):

    def setUp(self):
        self.query = MagicMock()
        for name in CHAIN_METHODS:
            getattr(self.query, name).return_value = self.query
        self.query.not_ = self.query
        self.client = MagicMock()
        self.client.table.return_value = self.query
        self.repo = SupabaseSyncRepository(client=self.client)

    def respond(self, *responses):
        self.query.execute.side_effect = list(responses)


class TestInit(unittest.TestCase):

    def test_missing_credentials(self):
        with patch.dict('os.environ', {}, clear=True):
            with self.assertRaises(RepositoryError):
                SupabaseSyncRepository()


class TestTraderQueries(SupabaseRepositoryTestCase):

    def test_list_trader_ids_paginates(self):
        first_page = [{'id': i} for i in range(1000)]
        self.respond(_response(first_page), _response([{'id': 'last'}]))

        ids = self.repo.list_trader_ids()

        self.assertEqual(len(ids), 1001)
        self.assertEqual(ids[-1], 'last')
        self.query.range.assert_any_call(0, 999)
        self.query.range.assert_any_call(1000, 1999)

    def test_stale_filter_includes_never_updated(self):
        self.respond(_response([{'id': 'a'}]))
        cutoff = datetime(2024, 1, 1, 6, 0, tzinfo=timezone.utc)

        self.assertEqual(self.repo.find_stale_trader_ids(cutoff), ['a'])
        self.query.or_.assert_called_once_with(
            "updated_at.lt.2024-01-01T06:00:00.000000Z,updated_at.is.null"
        )

    def test_active_traders_are_distinct(self):
        self.respond(_response([{'trader_id': 'a'}, {'trader_id': 'b'}, {'trader_id': 'a'}]))
        self.assertEqual(self.repo.find_active_trader_ids(datetime.now(timezone.utc)), ['a', 'b'])
        self.client.table.assert_called_with('posts')

    def test_errors_are_wrapped(self):
        self.query.execute.side_effect = Exception("connection refused")
        with self.assertRaises(RepositoryError):
            self.repo.find_stale_trader_ids(datetime.now(timezone.utc))

    def test_asset_duplicate_insert_rereads(self):
        self.respond(
            _response([]),
            Exception('duplicate key value violates unique constraint "assets_symbol_key" (23505)'),
            _response([{'id': 'asset-1'}]),
        )
        self.assertEqual(self.repo.get_or_create_asset('AAPL'), 'asset-1')

    def test_replace_holdings_deletes_then_upserts(self):
        self.respond(
            _response([{'id': 'asset-1'}]),
            _response([]),
            _response([]),
        )

        count = self.repo.replace_holdings('t-1', [Holding('AAPL', 55.0)])

        self.assertEqual(count, 1)
        self.query.delete.assert_called_once()
        rows = self.query.upsert.call_args[0][0]
        self.assertEqual(rows, [{
            'trader_id': 't-1', 'asset_id': 'asset-1', 'allocation_pct': 55.0, 'updated_at': rows[0]['updated_at']
        }])
        self.assertEqual(self.query.upsert.call_args[1], {'on_conflict': 'trader_id,asset_id'})


class TestJobQueries(SupabaseRepositoryTestCase):

    def test_claim_is_conditional_on_pending(self):
        self.respond(_response([{'id': 'job-1', 'trader_id': 't', 'status': 'in_progress'}]))

        job = self.repo.claim_job('job-1')

        self.assertEqual(job.status, 'in_progress')
        self.query.eq.assert_any_call("id", "job-1")
        self.query.eq.assert_any_call("status", "pending")
        self.assertEqual(self.query.update.call_args[0][0]['status'], 'in_progress')

    def test_claim_lost(self):
        self.respond(_response([]))
        self.assertIsNone(self.repo.claim_job('job-1'))

    def test_fetch_pending_oldest_first(self):
        self.respond(_response([{'id': 'j', 'trader_id': 't', 'status': 'pending'}]))

        jobs = self.repo.fetch_pending_jobs(10)

        self.assertEqual([j.id for j in jobs], ['j'])
        self.query.order.assert_called_once_with("created_at", desc=False)
        self.query.limit.assert_called_once_with(10)

    def test_count_uses_exact_count(self):
        self.respond(_response([], count=42))

        self.assertEqual(self.repo.count_jobs(['in_progress', 'running']), 42)
        self.query.select.assert_called_once_with("id", count="exact")
        self.query.in_.assert_called_once_with("status", ['in_progress', 'running'])

    def test_get_job_with_trader_join(self):
        self.respond(_response([{
            'id': 'j', 'trader_id': 't', 'status': 'pending',
            'trader': {'id': 't', 'etoro_username': 'alice'}
        }]))

        job = self.repo.get_job('j', with_trader=True)

        self.assertEqual(job.trader.etoro_username, 'alice')
        self.assertIn('trader:traders', self.query.select.call_args[0][0])

    def test_insert_jobs_keeps_database_message(self):
        self.query.execute.side_effect = Exception("duplicate key value violates unique constraint")

        with self.assertRaises(RepositoryError) as ctx:
            self.repo.insert_jobs([{'trader_id': 't'}])
        self.assertEqual(str(ctx.exception), "duplicate key value violates unique constraint")

    def test_reset_stuck_returns_updated_rows(self):
        self.respond(_response([{'id': 1}, {'id': 2}]))
        self.assertEqual(self.repo.reset_stuck_jobs(datetime.now(timezone.utc)), 2)
        self.assertEqual(self.query.update.call_args[0][0], {'status': 'pending', 'started_at': None})


class TestDomainLock(SupabaseRepositoryTestCase):

    def setUp(self):
        super().setUp()
        self.stale_before = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def test_acquired_by_conditional_update(self):
        self.respond(_response([{'domain': 'd'}]))

        self.assertTrue(self.repo.try_acquire_domain_lock('d', 'me', self.stale_before))
        self.query.or_.assert_called_once_with(
            f"status.neq.running,lock_acquired_at.lt.{_iso(self.stale_before)}"
        )
        self.query.insert.assert_not_called()

    def test_held_lock_is_not_acquired(self):
        self.respond(_response([]), _response([{'domain': 'd'}]))
        self.assertFalse(self.repo.try_acquire_domain_lock('d', 'me', self.stale_before))
        self.query.insert.assert_not_called()

    def test_missing_row_is_inserted(self):
        self.respond(_response([]), _response([]), _response([{'domain': 'd'}]))

        self.assertTrue(self.repo.try_acquire_domain_lock('d', 'me', self.stale_before))
        inserted = self.query.insert.call_args[0][0]
        self.assertEqual(inserted['domain'], 'd')
        self.assertEqual(inserted['lock_holder'], 'me')
        self.assertEqual(inserted['status'], 'running')

    def test_insert_race_is_not_acquired(self):
        self.respond(_response([]), _response([]), Exception("duplicate key (23505)"))
        self.assertFalse(self.repo.try_acquire_domain_lock('d', 'me', self.stale_before))

    def test_other_insert_errors_raise(self):
        self.respond(_response([]), _response([]), Exception("permission denied"))
        with self.assertRaises(RepositoryError):
            self.repo.try_acquire_domain_lock('d', 'me', self.stale_before)


if __name__ == '__main__':
    unittest.main()
