#!/usr/bin/env python3
"""
Trader Sync CLI
===============

Run the sync pipeline operations from a shell or cron:

    trader-sync enqueue --force
    trader-sync dispatch
    trader-sync process <job_id>
    trader-sync force-process --max-iterations 20
    trader-sync inspect
    trader-sync clear-locks --domain dispatch_sync_jobs
    trader-sync serve --port 5000 --with-scheduler

Results are printed as JSON. The exit code is 1 when a result reports
``success: false``.
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from config.constants import DEFAULT_FORCE_DELAY_SECONDS, DEFAULT_FORCE_MAX_ITERATIONS, VERSION
from config.settings import configure_system, get_settings
from data.repositories.repository_factory import configure_repositories, get_repository
from sync_dashboard.errors import FunctionInvocationError
from sync_dashboard.log_handler import setup_logging
from sync_dashboard.sync.queue_ops import clear_stale_locks, inspect_sync_jobs
from sync_dashboard.sync.service import run_dispatch, run_enqueue, run_force_process, run_process

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trader-sync", description="Trader sync job pipeline")
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--repository", choices=["supabase", "memory"], help="Override the repository backend")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log to the console at DEBUG level")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    sub = parser.add_subparsers(dest="command", required=True)

    enqueue = sub.add_parser("enqueue", help="Queue sync jobs")
    enqueue.add_argument("--force", action="store_true", help="Enqueue every trader")
    enqueue.add_argument("--trader-id", action="append", dest="trader_ids", help="Specific trader id (repeatable)")
    enqueue.add_argument("--hours-stale", type=float, help="Traders not updated for this many hours")
    enqueue.add_argument("--hours-active", type=float, help="Traders who posted within this many hours")
    enqueue.add_argument("--job-type", help="Job type for the new jobs")
    enqueue.add_argument("--sync-traders", action="store_true", help="Refresh the trader list first")

    sub.add_parser("dispatch", help="Run one dispatch pass")

    process = sub.add_parser("process", help="Process a single job")
    process.add_argument("job_id")

    force = sub.add_parser("force-process", help="Dispatch until the queue is drained")
    force.add_argument("--max-iterations", type=int, default=DEFAULT_FORCE_MAX_ITERATIONS)
    force.add_argument("--delay-seconds", type=float, default=DEFAULT_FORCE_DELAY_SECONDS)

    sub.add_parser("inspect", help="Show queue counts, samples and top errors")

    clear = sub.add_parser("clear-locks", help="Clear stale domain locks")
    clear.add_argument("--domain", action="append", dest="domains", help="Domain to check (repeatable)")
    clear.add_argument("--cleared-by", default="cli")

    serve = sub.add_parser("serve", help="Run the HTTP service")
    serve.add_argument("--port", type=int, default=5000)
    serve.add_argument("--with-scheduler", action="store_true", help="Start the background scheduler")

    return parser


def _print_result(result: Dict[str, Any]) -> int:
    print(json.dumps(result, indent=2, default=str))
    failed = result.get('success') is False or (result.get('summary') or {}).get('success') is False
    return 1 if failed else 0


def run_command(args: argparse.Namespace) -> int:
    if args.command == "enqueue":
        try:
            result = run_enqueue(
                trader_ids=args.trader_ids,
                force=args.force,
                hours_stale=args.hours_stale,
                hours_active=args.hours_active,
                job_type=args.job_type,
                sync_traders=args.sync_traders,
            )
        except FunctionInvocationError as e:
            result = {'success': False, 'error': "Failed to invoke sync-traders", 'details': e.body or e.message}
        return _print_result(result)

    if args.command == "dispatch":
        return _print_result(run_dispatch())

    if args.command == "process":
        return _print_result(run_process(args.job_id))

    if args.command == "force-process":
        return _print_result(run_force_process(max_iterations=args.max_iterations, delay_seconds=args.delay_seconds))

    if args.command == "inspect":
        return _print_result(inspect_sync_jobs(get_repository()))

    if args.command == "clear-locks":
        return _print_result(clear_stale_locks(get_repository(), domains=args.domains, cleared_by=args.cleared_by))

    if args.command == "serve":
        from sync_dashboard.app import run_server
        run_server(port=args.port, with_scheduler=args.with_scheduler)
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = configure_system(args.config) if args.config else get_settings()
    if args.repository:
        settings.set('repository.type', args.repository)

    if args.command != "serve":
        log_config = settings.get_logging_config()
        level = logging.DEBUG if args.verbose or settings.is_development_mode() else logging.INFO
        setup_logging(level=level, log_file=log_config.get('file'), tz_name=log_config.get('timezone'),
                      console=args.verbose)
        configure_repositories({'type': settings.get_repository_type()})

    try:
        return run_command(args)
    except Exception as e:
        logger.error(f"Command {args.command} failed: {e}", exc_info=True)
        print(json.dumps({'success': False, 'error': str(e)}, indent=2))
        return 1


if __name__ == "__main__":
    sys.exit(main())
