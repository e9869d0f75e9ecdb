"""
Tests for the in-memory repository.

The conditional updates (job claim, domain lock) must behave like their
SQL counterparts, including under concurrent callers.
"""

import threading
from datetime import timedelta

import pytest

from data.models.trader import Holding, Trade
from data.models.sync_state import SyncLogEntry
from data.repositories.base_repository import DataValidationError
from data.repositories.memory_repository import InMemorySyncRepository
from utils.timezone_utils import utc_now


def test_stale_and_active_selection(repo):
    now = utc_now()
    assert repo.find_stale_trader_ids(now - timedelta(hours=6)) == ['t-alice']
    assert repo.find_active_trader_ids(now - timedelta(days=7)) == ['t-bob']
    assert repo.find_active_trader_ids(now - timedelta(minutes=5)) == []


def test_active_traders_are_distinct(repo):
    repo.add_post('t-bob')
    repo.add_post('t-bob')
    repo.add_post(None)
    assert repo.find_active_trader_ids(utc_now() - timedelta(days=1)) == ['t-bob']


def test_claim_job_only_once(repo):
    job_id = repo.add_job('t-alice')

    claimed = repo.claim_job(job_id)
    assert claimed is not None
    assert claimed.status == 'in_progress'
    assert claimed.started_at is not None

    assert repo.claim_job(job_id) is None
    assert repo.claim_job('missing') is None


def test_concurrent_claims_have_single_winner(repo):
    job_id = repo.add_job('t-alice')
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(repo.claim_job(job_id))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(1 for r in results if r is not None) == 1


def test_fetch_pending_oldest_first_with_insertion_tiebreak(repo):
    stamp = (utc_now() - timedelta(minutes=30)).isoformat()
    first = repo.add_job('t-alice', created_at=stamp)
    second = repo.add_job('t-bob', created_at=stamp)
    older = repo.add_job('t-carol', created_at=(utc_now() - timedelta(hours=2)).isoformat())
    repo.add_job('t-carol', status='completed')

    pending = repo.fetch_pending_jobs(10)
    assert [job.id for job in pending] == [older, first, second]
    assert len(repo.fetch_pending_jobs(2)) == 2


def test_reset_stuck_jobs(repo):
    stuck = repo.add_job('t-alice', status='in_progress', started_at=(utc_now() - timedelta(minutes=15)).isoformat())
    fresh = repo.add_job('t-bob', status='in_progress', started_at=utc_now().isoformat())

    assert repo.reset_stuck_jobs(utc_now() - timedelta(minutes=10)) == 1
    assert repo.jobs[stuck]['status'] == 'pending'
    assert repo.jobs[stuck]['started_at'] is None
    assert repo.jobs[fresh]['status'] == 'in_progress'


def test_complete_open_jobs_created_before(repo):
    old = repo.add_job('t-alice', created_at=(utc_now() - timedelta(hours=30)).isoformat())
    new = repo.add_job('t-bob')

    assert repo.complete_open_jobs_created_before(utc_now() - timedelta(hours=24)) == 1
    assert repo.jobs[old]['status'] == 'completed'
    assert repo.jobs[old]['finished_at'] is not None
    assert repo.jobs[new]['status'] == 'pending'


def test_requeue_failed_jobs_respects_retry_ceiling(repo):
    low = repo.add_job('t-alice', status='failed', retry_count=3, error_message='boom')
    high = repo.add_job('t-bob', status='failed', retry_count=4)

    assert repo.requeue_failed_jobs(3) == 1
    assert repo.jobs[low]['status'] == 'pending'
    assert repo.jobs[low]['retry_count'] == 0
    assert repo.jobs[low]['error_message'] is None
    assert repo.jobs[high]['status'] == 'failed'


def test_count_jobs_accepts_several_statuses(repo):
    repo.add_job('t-alice', status='in_progress')
    repo.add_job('t-bob', status='running')
    repo.add_job('t-carol')

    assert repo.count_jobs('pending') == 1
    assert repo.count_jobs(['in_progress', 'running']) == 2


def test_get_job_with_trader(repo):
    job_id = repo.add_job('t-alice')
    orphan = repo.add_job('t-missing')

    assert repo.get_job(job_id, with_trader=True).trader.etoro_username == 'alice'
    assert repo.get_job(job_id).trader is None
    assert repo.get_job(orphan, with_trader=True).trader is None
    assert repo.get_job('nope') is None


def test_domain_lock_compare_and_set():
    repo = InMemorySyncRepository()
    now = utc_now()
    stale_before = now - timedelta(minutes=5)

    assert repo.try_acquire_domain_lock('d', 'first', stale_before) is True
    assert repo.try_acquire_domain_lock('d', 'second', stale_before) is False
    assert repo.get_domain_status('d').lock_holder == 'first'

    repo.update_domain_status('d', {'status': 'idle', 'lock_holder': None, 'lock_acquired_at': None})
    assert repo.try_acquire_domain_lock('d', 'second', stale_before) is True
    assert repo.get_domain_status('d').lock_holder == 'second'


def test_domain_lock_takeover_when_stale():
    repo = InMemorySyncRepository()
    repo.set_domain_status('d', status='running', lock_holder='dead',
                           lock_acquired_at=(utc_now() - timedelta(minutes=9)).isoformat())

    assert repo.try_acquire_domain_lock('d', 'new', utc_now() - timedelta(minutes=5)) is True
    assert repo.get_domain_status('d').lock_holder == 'new'


def test_running_lock_without_timestamp_is_held():
    repo = InMemorySyncRepository()
    repo.set_domain_status('d', status='running', lock_holder='someone')
    assert repo.try_acquire_domain_lock('d', 'new', utc_now() - timedelta(minutes=5)) is False


def test_holdings_replace_and_assets_are_reused(repo):
    repo.replace_holdings('t-alice', [Holding('AAPL', 40.0), Holding('TSLA', 60.0)])
    repo.replace_holdings('t-alice', [Holding('AAPL', 100.0)])

    assert len(repo.holdings['t-alice']) == 1
    assert len(repo.assets) == 2

    trades = [Trade('AAPL', 'buy', utc_now())]
    assert repo.insert_trades('t-alice', trades) == 1
    assert len(repo.assets) == 2


def test_asset_requires_symbol(repo):
    with pytest.raises(DataValidationError):
        repo.get_or_create_asset('')


def test_insert_sync_log_records_timestamp(repo):
    repo.insert_sync_log(SyncLogEntry('d', 'warn', 'careful', {'x': 1}))
    assert repo.sync_logs[0]['level'] == 'warn'
    assert repo.sync_logs[0]['created_at']
