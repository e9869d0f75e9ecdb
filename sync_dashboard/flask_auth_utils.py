#!/usr/bin/env python3
"""
Flask Authentication Utilities
==============================

Key-based auth for the function endpoints. Callers present the anon or
service role key either as ``Authorization: Bearer <key>`` or in the
``apikey`` header, the same way Supabase edge functions are invoked.
"""

import hmac
import logging
from functools import wraps
from typing import Dict, Optional

from flask import jsonify, request

from sync_dashboard.supabase_client import get_accepted_api_keys

logger = logging.getLogger(__name__)


def get_bearer_token() -> Optional[str]:
    """Token from the Authorization header, without the Bearer prefix"""
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header[7:].strip() or None
    return None


def get_api_key_header() -> Optional[str]:
    return request.headers.get('apikey') or None


def get_forward_headers() -> Dict[str, str]:
    """Caller credentials to pass on when this service invokes another function"""
    headers = {}
    if request.headers.get('Authorization'):
        headers['Authorization'] = request.headers['Authorization']
    if request.headers.get('apikey'):
        headers['apikey'] = request.headers['apikey']
    return headers


def is_authorized() -> bool:
    accepted = get_accepted_api_keys()
    if not accepted:
        logger.error("No API keys configured; rejecting function call")
        return False

    presented = [key for key in (get_bearer_token(), get_api_key_header()) if key]
    return any(hmac.compare_digest(candidate, key) for candidate in presented for key in accepted)


def require_service_auth(f):
    """Decorator rejecting requests without a configured key (401 JSON).

    OPTIONS preflight requests pass through.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if request.method == 'OPTIONS':
            return f(*args, **kwargs)
        if not is_authorized():
            logger.warning(f"Unauthorized request to {request.path}")
            return jsonify({"success": False, "error": "Unauthorized"}), 401
        return f(*args, **kwargs)
    return decorated_function
