#!/usr/bin/env python3
"""
Bullaware API Client
====================

HTTP client for the Bullaware investor API (portfolio, trades, details,
risk score and metrics). The API allows roughly 10 requests per minute,
so every request waits until `rate_limit_delay` seconds have passed since
the previous one.
"""

import os
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config.constants import (
    BULLAWARE_BASE_URL,
    DEFAULT_BULLAWARE_RATE_LIMIT_DELAY_SECONDS,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
)
from sync_dashboard.errors import BullawareAPIError

logger = logging.getLogger(__name__)


class BullawareClient:
    """Client for interacting with the Bullaware API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = BULLAWARE_BASE_URL,
        rate_limit_delay: float = DEFAULT_BULLAWARE_RATE_LIMIT_DELAY_SECONDS,
        timeout: int = DEFAULT_HTTP_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize Bullaware client.

        Args:
            api_key: API key (defaults to BULLAWARE_API_KEY)
            base_url: API base URL
            rate_limit_delay: Minimum seconds between two requests
            timeout: Request timeout in seconds
            sleep: Sleep function (replaced in tests)
        """
        self.api_key = api_key or os.getenv("BULLAWARE_API_KEY")
        self.base_url = base_url.rstrip('/')
        self.rate_limit_delay = rate_limit_delay
        self.timeout = timeout
        self._sleep = sleep
        self._last_request_at: Optional[float] = None
        self._pace_lock = threading.Lock()

        # Retry only gateway hiccups here; rate limits and other 5xx surface to the job retry policy
        self.session = requests.Session()
        retry_strategy = Retry(
            total=2,
            backoff_factor=0.5,
            status_forcelist=[502, 503, 504],
            allowed_methods=["GET"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @classmethod
    def from_settings(cls, settings) -> 'BullawareClient':
        config = settings.get_bullaware_config()
        return cls(
            base_url=config.get('base_url', BULLAWARE_BASE_URL),
            rate_limit_delay=float(config.get('rate_limit_delay_seconds', DEFAULT_BULLAWARE_RATE_LIMIT_DELAY_SECONDS)),
            timeout=int(config.get('timeout_seconds', DEFAULT_HTTP_TIMEOUT_SECONDS)),
        )

    def _wait_for_rate_limit(self) -> None:
        with self._pace_lock:
            if self._last_request_at is not None and self.rate_limit_delay > 0:
                elapsed = time.monotonic() - self._last_request_at
                if elapsed < self.rate_limit_delay:
                    self._sleep(self.rate_limit_delay - elapsed)
            self._last_request_at = time.monotonic()

    def _get(self, path: str) -> Optional[Any]:
        """GET a JSON document.

        Returns:
            Parsed JSON, or None when the resource does not exist (404)

        Raises:
            BullawareAPIError: Missing key, network failure or non-2xx status
        """
        if not self.api_key:
            raise BullawareAPIError("BULLAWARE_API_KEY is not configured", transient=False)

        self._wait_for_rate_limit()
        url = f"{self.base_url}{path}"
        logger.debug(f"Bullaware GET {url}")

        try:
            response = self.session.get(
                url,
                headers={
                    'Authorization': f"Bearer {self.api_key}",
                    'Content-Type': 'application/json',
                },
                timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise BullawareAPIError(f"Bullaware request timed out: {path}", transient=True) from e
        except requests.exceptions.RequestException as e:
            raise BullawareAPIError(f"Bullaware network error: {e}", transient=True) from e

        if response.status_code == 404:
            logger.info(f"Bullaware resource not found: {path}")
            return None

        if not response.ok:
            body = (response.text or '')[:200]
            raise BullawareAPIError(
                f"Bullaware HTTP {response.status_code} for {path}: {body}",
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise BullawareAPIError(f"Bullaware returned invalid JSON for {path}", transient=False) from e

    def get_portfolio(self, username: str) -> List[Dict[str, Any]]:
        data = self._get(f"/investors/{username}/portfolio")
        if not data:
            return []
        if isinstance(data, list):
            return data
        return data.get('data') or data.get('positions') or data.get('holdings') or []

    def get_trades(self, username: str) -> List[Dict[str, Any]]:
        data = self._get(f"/investors/{username}/trades")
        if not data:
            return []
        if isinstance(data, list):
            return data
        return data.get('positions') or data.get('data') or data.get('trades') or []

    def get_investor(self, username: str) -> Dict[str, Any]:
        data = self._get(f"/investors/{username}")
        if not isinstance(data, dict):
            return {}
        return data.get('investor') or data.get('data') or data

    def get_monthly_risk_score(self, username: str) -> Optional[float]:
        """Latest monthly risk score.

        The endpoint answers either with a bare number, an object with
        ``riskScore``, or a ``points`` series whose last entry is current.
        """
        data = self._get(f"/investors/{username}/risk-score/monthly")
        if data is None:
            return None
        if isinstance(data, (int, float)) and not isinstance(data, bool):
            return float(data)
        if isinstance(data, dict):
            if data.get('riskScore') is not None:
                return data['riskScore']
            points = data.get('points') or []
            if points and isinstance(points[-1], dict):
                return points[-1].get('riskScore')
        return None

    def get_metrics(self, username: str) -> Dict[str, Any]:
        data = self._get(f"/investors/{username}/metrics")
        if not isinstance(data, dict):
            return {}
        return data.get('data') or data
