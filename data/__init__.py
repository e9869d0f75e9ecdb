"""Data access layer for the trader sync service.

This module provides data models and repository patterns for accessing
traders, sync jobs, domain locks and sync logs from Supabase or memory.
"""
