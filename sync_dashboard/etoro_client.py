#!/usr/bin/env python3
"""
eToro Profile Client
====================

Fetches a trader profile from the endpoint configured in
ETORO_TRADER_PROFILE_URL. The template may contain ``{username}`` and
``{cid}`` placeholders. Response shapes differ between endpoints, so
field extraction is best-effort.
"""

import os
import logging
from typing import Any, Dict, Iterable, Optional
from urllib.parse import quote

import requests

from config.constants import ETORO_PROFILE_TIMEOUT_SECONDS
from sync_dashboard.errors import EtoroAPIError

logger = logging.getLogger(__name__)

ETORO_HEADERS = {
    'Accept': 'application/json',
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
}


def _pick(obj: Any, keys: Iterable[str]) -> Any:
    if not isinstance(obj, dict):
        return None
    for key in keys:
        value = obj.get(key)
        if value is not None and value != '':
            return value
    return None


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    if isinstance(value, dict):
        return _as_number(_pick(value, ['Value', 'value', 'val']))
    return None


def extract_profile(payload: Any) -> Dict[str, Any]:
    """Pull the known profile fields out of an eToro response.

    Handles ``{data: ...}``, ``{Value: ...}``, ``{Items: [...]}`` and bare
    array (search endpoint) shapes.

    Returns:
        Dict with username, cid, display_name, gain and copiers (None when absent)
    """
    root = _pick(payload, ['data', 'user', 'profile']) if isinstance(payload, dict) else payload
    if root is None:
        root = payload
    if isinstance(root, list):
        root = root[0] if root else {}

    value = _pick(root, ['Value', 'value']) or root
    for items_key in ('Items', 'items'):
        items = value.get(items_key) if isinstance(value, dict) else None
        if isinstance(items, list) and items:
            value = items[0]

    username = _pick(value, ['UserName', 'userName', 'username']) or _pick(root, ['UserName', 'userName', 'username'])
    cid = _pick(root, ['CID', 'cid']) or _pick(value, ['CustomerId', 'customerId', 'customerID', 'CID', 'cid'])

    return {
        'username': str(username).strip() if username else None,
        'cid': str(cid).strip() if cid is not None else None,
        'display_name': _pick(value, ['displayName', 'DisplayName', 'FullName', 'fullName', 'name']),
        'gain': _as_number(_pick(value, ['Gain', 'gain', 'gainPct', 'GainPct', 'return', 'Return'])),
        'copiers': _as_number(_pick(value, ['Copiers', 'copiers', 'copiersCount'])),
    }


class EtoroClient:
    """Client for the configured eToro profile endpoint."""

    def __init__(self, profile_url_template: Optional[str] = None, timeout: int = ETORO_PROFILE_TIMEOUT_SECONDS):
        self.profile_url_template = profile_url_template or os.getenv("ETORO_TRADER_PROFILE_URL")
        self.timeout = timeout
        self.session = requests.Session()

    def build_profile_url(self, username: Optional[str], cid: Optional[str]) -> str:
        """Fill the URL template.

        Raises:
            EtoroAPIError: Template not configured or a required placeholder has no value
        """
        template = self.profile_url_template
        if not template:
            raise EtoroAPIError("ETORO_TRADER_PROFILE_URL not configured", transient=False)
        if '{username}' in template and not username:
            raise EtoroAPIError("Missing username", transient=False)
        if '{cid}' in template and not cid:
            raise EtoroAPIError("Missing cid", transient=False)
        return template.replace('{username}', quote(username or '', safe='')) \
                       .replace('{cid}', quote(cid or '', safe=''))

    def fetch_profile(self, username: Optional[str], cid: Optional[str]) -> Dict[str, Any]:
        """Fetch and parse a trader profile.

        Raises:
            EtoroAPIError: Request failure, non-2xx status or unparseable body
        """
        url = self.build_profile_url(username, cid)
        logger.debug(f"eToro GET {url}")

        try:
            response = self.session.get(url, headers=ETORO_HEADERS, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise EtoroAPIError("eToro request timed out", transient=True) from e
        except requests.exceptions.RequestException as e:
            raise EtoroAPIError(f"eToro network error: {e}", transient=True) from e

        if not response.ok:
            raise EtoroAPIError(f"eToro HTTP {response.status_code}", status_code=response.status_code)

        try:
            payload = response.json() if response.text else {}
        except ValueError as e:
            raise EtoroAPIError("Failed to parse eToro JSON", transient=False) from e

        return extract_profile(payload)
