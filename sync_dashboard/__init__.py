"""
Trader Sync Dashboard
=====================

Flask service that runs the trader sync-job pipeline
(enqueue -> dispatch -> process) against Supabase, with an APScheduler
background scheduler and a command line entry point.
"""

from config.constants import VERSION

__version__ = VERSION
