"""Domain lock status and sync log models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional, Any

from config.constants import DOMAIN_IDLE, DOMAIN_RUNNING
from utils.timezone_utils import parse_timestamp, age_minutes, utc_now


@dataclass
class DomainStatus:
    """A row in sync_domain_status: one lockable sync domain."""
    domain: str
    status: str = DOMAIN_IDLE
    lock_holder: Optional[str] = None
    lock_acquired_at: Optional[datetime] = None
    last_successful_at: Optional[datetime] = None
    last_error_message: Optional[str] = None
    last_error_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.status == DOMAIN_RUNNING

    def lock_age_minutes(self, now: Optional[datetime] = None) -> int:
        return age_minutes(self.lock_acquired_at, now)

    def is_stale(self, ttl_minutes: float, now: Optional[datetime] = None) -> bool:
        """True when a lock is held and older than the TTL.

        A running row without an acquisition time is treated as fresh.
        """
        if self.lock_acquired_at is None:
            return False
        return (now or utc_now()) - self.lock_acquired_at > timedelta(minutes=ttl_minutes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'domain': self.domain,
            'status': self.status,
            'lock_holder': self.lock_holder,
            'lock_acquired_at': self.lock_acquired_at.isoformat() if self.lock_acquired_at else None,
            'last_successful_at': self.last_successful_at.isoformat() if self.last_successful_at else None,
            'last_error_message': self.last_error_message,
            'last_error_at': self.last_error_at.isoformat() if self.last_error_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DomainStatus:
        return cls(
            domain=data['domain'],
            status=data.get('status') or DOMAIN_IDLE,
            lock_holder=data.get('lock_holder'),
            lock_acquired_at=parse_timestamp(data.get('lock_acquired_at')),
            last_successful_at=parse_timestamp(data.get('last_successful_at')),
            last_error_message=data.get('last_error_message'),
            last_error_at=parse_timestamp(data.get('last_error_at')),
        )


@dataclass
class SyncLogEntry:
    """A row in sync_logs, the persistent audit trail of the pipeline."""
    domain: str
    level: str  # info/warn/error
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'domain': self.domain,
            'level': self.level,
            'message': self.message,
            'details': self.details,
        }
