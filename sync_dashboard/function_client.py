#!/usr/bin/env python3
"""
Function Client
===============

Invokes sync functions over HTTP at ``<base_url>/functions/v1/<name>``,
the way the dispatcher calls the job processor when it runs in ``http``
invoke mode.
"""

import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config.constants import DEFAULT_INVOKE_TIMEOUT_SECONDS
from sync_dashboard.errors import FunctionInvocationError
from sync_dashboard.supabase_client import get_service_role_key

logger = logging.getLogger(__name__)


class FunctionClient:
    """HTTP client for the /functions/v1 endpoints."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = DEFAULT_INVOKE_TIMEOUT_SECONDS):
        """Initialize function client.

        Args:
            base_url: Service base URL (without /functions/v1)
            api_key: Key sent as bearer token and apikey (defaults to the service role key)
            timeout: Request timeout in seconds
        """
        if not base_url:
            raise ValueError("Function base URL must be configured (FUNCTIONS_BASE_URL or SUPABASE_URL)")

        self.base_url = base_url.rstrip('/')
        self.api_key = api_key or get_service_role_key()
        self.timeout = timeout

        # Connection-level retries only; a POST that reached the server is never replayed
        self.session = requests.Session()
        retry_strategy = Retry(
            total=2,
            connect=2,
            read=0,
            status=0,
            backoff_factor=0.3,
            allowed_methods=["POST"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def function_url(self, name: str) -> str:
        return f"{self.base_url}/functions/v1/{name}"

    def _headers(self, extra_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f"Bearer {self.api_key}"
            headers['apikey'] = self.api_key
        if extra_headers:
            # Caller credentials take precedence over the configured key
            headers.update({k: v for k, v in extra_headers.items() if v})
        return headers

    def invoke(self, name: str, payload: Optional[Dict[str, Any]] = None,
               headers: Optional[Dict[str, str]] = None, timeout: Optional[float] = None) -> Dict[str, Any]:
        """POST a JSON payload to a function and return its JSON body.

        Raises:
            FunctionInvocationError: Network failure, timeout or non-2xx status
        """
        url = self.function_url(name)
        logger.debug(f"Invoking function {name} at {url}")

        try:
            response = self.session.post(
                url,
                json=payload or {},
                headers=self._headers(headers),
                timeout=timeout or self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise FunctionInvocationError(f"Timed out invoking {name}") from e
        except requests.exceptions.RequestException as e:
            raise FunctionInvocationError(f"Fetch error invoking {name}: {e}") from e

        try:
            body = response.json() if response.text else {}
        except ValueError:
            body = {'raw': response.text[:500]}

        if not response.ok:
            raise FunctionInvocationError(
                f"HTTP {response.status_code} invoking {name}",
                status_code=response.status_code,
                body=body
            )

        return body if isinstance(body, dict) else {'data': body}
