"""Trader, asset, holding and trade models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Any, List

from utils.timezone_utils import parse_timestamp


def _safe_float(value: Any) -> Optional[float]:
    """Convert provider/database numbers, tolerating strings and blanks."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, str):
            value = value.strip()
            if not value or value.lower() in ('nan', 'none', 'null'):
                return None
        return float(value)
    except (ValueError, TypeError):
        return None


# Columns the sync handlers may write on a trader row
TRADER_METRIC_FIELDS: List[str] = [
    'copiers',
    'risk_score',
    'profitable_weeks_pct',
    'profitable_months_pct',
    'daily_drawdown',
    'weekly_drawdown',
    'sharpe_ratio',
    'sortino_ratio',
    'alpha',
    'beta',
    'gain_12m',
]


@dataclass
class Trader:
    """A copy-trading investor profile.

    Only `id` is required; everything else is filled in by the sync handlers.
    """
    id: str
    etoro_username: Optional[str] = None
    etoro_cid: Optional[str] = None
    display_name: Optional[str] = None
    metrics: Dict[str, Optional[float]] = field(default_factory=dict)
    updated_at: Optional[datetime] = None
    details_synced_at: Optional[datetime] = None

    @property
    def identity(self) -> str:
        """Human readable identity used in logs and job results."""
        return self.etoro_username if self.etoro_username else f"trader:{self.id}"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'etoro_username': self.etoro_username,
            'etoro_cid': self.etoro_cid,
            'display_name': self.display_name,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'details_synced_at': self.details_synced_at.isoformat() if self.details_synced_at else None,
        }
        data.update(self.metrics)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Trader:
        cid = data.get('etoro_cid')
        return cls(
            id=str(data['id']),
            etoro_username=data.get('etoro_username') or None,
            etoro_cid=str(cid).strip() if cid not in (None, '') else None,
            display_name=data.get('display_name'),
            metrics={k: _safe_float(data.get(k)) for k in TRADER_METRIC_FIELDS if k in data},
            updated_at=parse_timestamp(data.get('updated_at')),
            details_synced_at=parse_timestamp(data.get('details_synced_at')),
        )


@dataclass
class Holding:
    """One position in a trader's portfolio, as an allocation percentage."""
    symbol: str
    allocation_pct: float
    name: Optional[str] = None
    asset_type: str = 'stock'

    @classmethod
    def from_provider(cls, data: Dict[str, Any]) -> Optional[Holding]:
        """Build a holding from a Bullaware portfolio entry.

        Returns None when the entry carries no usable symbol.
        """
        symbol = data.get('symbol') or data.get('instrumentId') or data.get('ticker') or data.get('asset')
        if not symbol:
            return None
        raw_type = data.get('type')
        return cls(
            symbol=str(symbol),
            allocation_pct=_safe_float(data.get('value')) or 0.0,
            name=data.get('name') or data.get('instrumentName') or str(symbol),
            asset_type=str(raw_type).lower() if raw_type else 'stock',
        )


@dataclass
class Trade:
    """A closed position reported by the provider."""
    symbol: str
    action: str  # buy/sell
    executed_at: datetime

    @classmethod
    def from_provider(cls, data: Dict[str, Any], default_time: datetime) -> Optional[Trade]:
        symbol = data.get('symbol') or data.get('ticker')
        if not symbol:
            return None
        return cls(
            symbol=str(symbol),
            action='buy' if data.get('isBuy') else 'sell',
            executed_at=parse_timestamp(data.get('closeDateTime')) or default_time,
        )
