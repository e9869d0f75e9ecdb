"""Sync job model."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Any

from config.constants import (
    DEFAULT_JOB_TYPE,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
)
from utils.timezone_utils import parse_timestamp
from .trader import Trader


@dataclass
class SyncJob:
    """A row in the sync_jobs table.

    Lifecycle: pending -> in_progress -> completed | failed. A transient
    failure sends an in_progress job back to pending with retry_count + 1.
    """
    id: str
    trader_id: Optional[str]
    status: str = STATUS_PENDING
    job_type: str = DEFAULT_JOB_TYPE
    retry_count: int = 0
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    trader: Optional[Trader] = None  # populated when fetched with the trader join

    @property
    def is_terminal(self) -> bool:
        return self.status in (STATUS_COMPLETED, STATUS_FAILED)

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING

    @property
    def is_in_progress(self) -> bool:
        return self.status == STATUS_IN_PROGRESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'trader_id': self.trader_id,
            'status': self.status,
            'job_type': self.job_type,
            'retry_count': self.retry_count,
            'error_message': self.error_message,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SyncJob:
        """Create a SyncJob from a database row.

        A nested ``trader`` object (from ``select('*, trader:traders(...)')``)
        is parsed into a Trader.
        """
        trader_data = data.get('trader')
        trader_id = data.get('trader_id')
        return cls(
            id=str(data['id']),
            trader_id=str(trader_id) if trader_id is not None else None,
            status=data.get('status') or STATUS_PENDING,
            job_type=str(data.get('job_type') or DEFAULT_JOB_TYPE),
            retry_count=int(data.get('retry_count') or 0),
            error_message=data.get('error_message'),
            created_at=parse_timestamp(data.get('created_at')),
            started_at=parse_timestamp(data.get('started_at')),
            finished_at=parse_timestamp(data.get('finished_at')),
            trader=Trader.from_dict(trader_data) if isinstance(trader_data, dict) and trader_data.get('id') else None,
        )

    @staticmethod
    def new_row(trader_id: str, job_type: str = DEFAULT_JOB_TYPE) -> Dict[str, Any]:
        """Row payload for inserting a fresh pending job."""
        return {
            'trader_id': trader_id,
            'status': STATUS_PENDING,
            'job_type': job_type,
        }
