"""Shared helpers for the trader sync service."""
