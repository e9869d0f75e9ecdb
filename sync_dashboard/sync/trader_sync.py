"""
Trader Sync Handlers
====================

The work behind each job type:

- ``deep_sync``: portfolio, recent trades and metrics from Bullaware
- ``etoro_profile``: display name, gain and copiers from the eToro profile endpoint

Handlers take a Trader and return a result dict. Provider failures raise
SyncHandlerError subclasses so the job processor can decide whether to
retry.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from config.constants import JOB_TYPE_DEEP_SYNC, JOB_TYPE_ETORO_PROFILE, TRADES_PER_SYNC
from data.models.trader import Holding, Trade, Trader, _safe_float
from data.repositories.base_repository import BaseSyncRepository
from sync_dashboard.bullaware_client import BullawareClient
from sync_dashboard.etoro_client import EtoroClient
from utils.timezone_utils import utc_now, utc_now_iso

logger = logging.getLogger(__name__)


def _parse_holdings(positions: List[Dict[str, Any]]) -> List[Holding]:
    holdings = []
    for position in positions:
        if not isinstance(position, dict):
            continue
        holding = Holding.from_provider(position)
        if holding is not None:
            holdings.append(holding)
    return holdings


def _parse_trades(positions: List[Dict[str, Any]]) -> List[Trade]:
    now = utc_now()
    trades = []
    for position in positions[:TRADES_PER_SYNC]:
        if not isinstance(position, dict):
            continue
        trade = Trade.from_provider(position, now)
        if trade is not None:
            trades.append(trade)
    return trades


def sync_trader_details(repo: BaseSyncRepository, bullaware: BullawareClient, trader: Trader) -> Dict[str, Any]:
    """Deep sync one trader from Bullaware.

    Each Bullaware call waits for the client's rate limit, so a full sync
    takes about half a minute.

    Returns:
        Dict with success, username and counts of what was written

    Raises:
        BullawareAPIError: Provider request failed
        RepositoryError: Writing the results failed
    """
    username = trader.etoro_username
    logger.info(f"Deep sync for {username}")

    holdings = _parse_holdings(bullaware.get_portfolio(username))
    holdings_written = repo.replace_holdings(trader.id, holdings)
    logger.info(f"Synced {holdings_written} holdings for {username}")

    trades = _parse_trades(bullaware.get_trades(username))
    trades_written = repo.insert_trades(trader.id, trades) if trades else 0
    logger.info(f"Synced {trades_written} trades for {username}")

    updates: Dict[str, Any] = {}

    investor = bullaware.get_investor(username)
    if investor:
        updates.update({
            'profitable_weeks_pct': _safe_float(investor.get('profitableWeeksPct')),
            'profitable_months_pct': _safe_float(investor.get('profitableMonthsPct')),
            'daily_drawdown': _safe_float(investor.get('dailyDD')),
            'weekly_drawdown': _safe_float(investor.get('weeklyDD')),
        })

    risk_score = bullaware.get_monthly_risk_score(username)
    if risk_score is not None:
        updates['risk_score'] = _safe_float(risk_score)

    metrics = bullaware.get_metrics(username)
    if metrics:
        updates.update({
            'sharpe_ratio': _safe_float(metrics.get('sharpeRatio')),
            'sortino_ratio': _safe_float(metrics.get('sortinoRatio')),
            'alpha': _safe_float(metrics.get('alpha')),
            'beta': _safe_float(metrics.get('beta')),
        })

    # Keep existing values when the provider omits a metric
    updates = {k: v for k, v in updates.items() if v is not None}
    now = utc_now_iso()
    updates['details_synced_at'] = now
    updates['updated_at'] = now
    repo.update_trader(trader.id, updates)

    return {
        'success': True,
        'username': username,
        'holdings': holdings_written,
        'trades': trades_written,
        'metrics_updated': sorted(k for k in updates if k not in ('details_synced_at', 'updated_at')),
    }


def sync_trader_etoro(repo: BaseSyncRepository, etoro: EtoroClient, trader: Trader) -> Dict[str, Any]:
    """Refresh a trader's public eToro profile fields.

    Raises:
        EtoroAPIError: Template missing, request failed or body unparseable
    """
    profile = etoro.fetch_profile(trader.etoro_username, trader.etoro_cid)

    updates: Dict[str, Any] = {}
    if profile.get('display_name'):
        updates['display_name'] = profile['display_name']
    if profile.get('gain') is not None:
        updates['gain_12m'] = profile['gain']
    if profile.get('copiers') is not None:
        updates['copiers'] = profile['copiers']
    if profile.get('cid') and not trader.etoro_cid:
        updates['etoro_cid'] = profile['cid']
    updates['updated_at'] = utc_now_iso()

    repo.update_trader(trader.id, updates)
    logger.info(f"Updated eToro profile for {trader.identity}")

    return {
        'success': True,
        'username': profile.get('username') or trader.etoro_username,
        'etoro_cid': profile.get('cid') or trader.etoro_cid,
        'updated': True,
        'gain': profile.get('gain'),
        'copiers': profile.get('copiers'),
    }


def build_handlers(repo: BaseSyncRepository, settings=None,
                   bullaware: Optional[BullawareClient] = None,
                   etoro: Optional[EtoroClient] = None) -> Dict[str, Callable[[Trader], Dict[str, Any]]]:
    """Map each job type to its handler, bound to the repository and API clients."""
    if bullaware is None:
        bullaware = BullawareClient.from_settings(settings) if settings is not None else BullawareClient()
    if etoro is None:
        etoro = EtoroClient()

    return {
        JOB_TYPE_DEEP_SYNC: lambda trader: sync_trader_details(repo, bullaware, trader),
        JOB_TYPE_ETORO_PROFILE: lambda trader: sync_trader_etoro(repo, etoro, trader),
    }
