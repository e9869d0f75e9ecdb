#!/usr/bin/env python3
"""
Supabase client for the trader sync service
Wraps supabase-py client creation and key selection
"""

import os
import logging
from typing import Optional, List

from dotenv import load_dotenv
from supabase import create_client, Client

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

# Suppress httpx INFO logs (one line per Supabase HTTP request)
logging.getLogger("httpx").setLevel(logging.WARNING)


def get_service_role_key() -> Optional[str]:
    return os.getenv("SUPABASE_SECRET_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY")


def get_publishable_key() -> Optional[str]:
    return os.getenv("SUPABASE_PUBLISHABLE_KEY") or os.getenv("SUPABASE_ANON_KEY")


def get_accepted_api_keys() -> List[str]:
    """Keys a caller may present to invoke the sync functions."""
    return [key for key in (get_service_role_key(), get_publishable_key()) if key]


class SupabaseClient:
    """Client for interacting with Supabase database"""

    def __init__(self, use_service_role: bool = False):
        """Initialize Supabase client

        Args:
            use_service_role: If True, use service role key (bypasses RLS, required by the sync pipeline)
        """
        self.url = os.getenv("SUPABASE_URL")

        if use_service_role:
            # Use service role key for pipeline writes (bypasses RLS)
            self.key = get_service_role_key()
            if not self.key:
                raise ValueError("SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set for admin operations")
        else:
            self.key = get_publishable_key()
            if not self.key:
                raise ValueError("SUPABASE_PUBLISHABLE_KEY or SUPABASE_ANON_KEY must be set")

        logger.debug(f"SUPABASE_URL exists: {bool(self.url)}")
        logger.debug(f"Using key type: {'service_role' if use_service_role else 'publishable'}")

        if not self.url or not self.key:
            logger.error(f"Missing environment variables - URL: {bool(self.url)}, KEY: {bool(self.key)}")
            raise ValueError("SUPABASE_URL and appropriate key must be set")

        self.supabase: Client = create_client(self.url, self.key)
