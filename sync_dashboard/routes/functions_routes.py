#!/usr/bin/env python3
"""
Function Routes
===============

HTTP entry points for the sync pipeline under ``/functions/v1/<name>``,
mirroring how the jobs are invoked as edge functions: JSON in, JSON out,
bearer/apikey auth.

Dispatch and process answer 200 even when they fail so a caller looping
over them keeps going; the failure is in the body.
"""

import logging
from typing import Any, Dict

from flask import Blueprint, jsonify, request

from data.repositories.repository_factory import get_repository
from sync_dashboard.errors import FunctionInvocationError
from sync_dashboard.flask_auth_utils import get_forward_headers, require_service_auth
from sync_dashboard.sync.queue_ops import clear_stale_locks, inspect_sync_jobs
from sync_dashboard.sync.service import run_dispatch, run_enqueue, run_force_process, run_process

logger = logging.getLogger(__name__)

functions_bp = Blueprint('functions', __name__, url_prefix='/functions/v1')


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _preflight():
    return '', 200


@functions_bp.route('/enqueue-sync-jobs', methods=['POST', 'OPTIONS'])
@require_service_auth
def enqueue_sync_jobs_route():
    """Queue sync jobs for the selected traders"""
    if request.method == 'OPTIONS':
        return _preflight()
    body = _json_body()
    try:
        result = run_enqueue(
            trader_ids=body.get('trader_ids'),
            force=bool(body.get('force', False)),
            hours_stale=body.get('hours_stale'),
            hours_active=body.get('hours_active'),
            job_type=body.get('job_type'),
            sync_traders=bool(body.get('sync_traders', False)),
        )
        return jsonify(result), 200
    except FunctionInvocationError as e:
        return jsonify({"success": False, "error": "Failed to invoke sync-traders", "details": e.body or e.message}), 500
    except Exception as e:
        logger.error(f"Error enqueuing sync jobs: {e}", exc_info=True)
        return jsonify({"success": False, "error": str(e) or 'Unknown error', "enqueued_count": 0}), 500


@functions_bp.route('/dispatch-sync-jobs', methods=['POST', 'OPTIONS'])
@require_service_auth
def dispatch_sync_jobs_route():
    """Run one dispatch pass"""
    if request.method == 'OPTIONS':
        return _preflight()
    invocation_id = request.headers.get('x-dispatch-invocation')
    try:
        result = run_dispatch(invocation_id=invocation_id, forward_headers=get_forward_headers())
    except Exception as e:
        logger.error(f"Dispatch error: {e}", exc_info=True)
        result = {"success": False, "error": str(e), "dispatched_jobs": 0, "attempted": 0, "errors": [{"error": str(e)}]}
    return jsonify(result), 200


@functions_bp.route('/process-sync-job', methods=['POST', 'OPTIONS'])
@require_service_auth
def process_sync_job_route():
    """Process a single job by id"""
    if request.method == 'OPTIONS':
        return _preflight()
    job_id = _json_body().get('job_id')
    logger.info(f"Received request for job_id: {job_id}")
    if not job_id:
        return jsonify({"error": "Missing job_id"}), 400
    try:
        result = run_process(str(job_id))
    except Exception as e:
        logger.error(f"Fatal error processing job {job_id}: {e}", exc_info=True)
        result = {"success": False, "error": str(e) or 'Unknown error'}
    return jsonify(result), 200


@functions_bp.route('/force-process-queue', methods=['POST', 'OPTIONS'])
@require_service_auth
def force_process_queue_route():
    """Drain the queue by dispatching until nothing is pending"""
    if request.method == 'OPTIONS':
        return _preflight()
    body = _json_body()
    kwargs = {}
    if body.get('max_iterations'):
        kwargs['max_iterations'] = int(body['max_iterations'])
    if body.get('delay_ms'):
        kwargs['delay_seconds'] = float(body['delay_ms']) / 1000
    try:
        return jsonify(run_force_process(**kwargs)), 200
    except Exception as e:
        logger.error(f"Error in force-process-queue: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@functions_bp.route('/clear-stale-locks', methods=['POST', 'OPTIONS'])
@require_service_auth
def clear_stale_locks_route():
    """Release domain locks older than their TTL"""
    if request.method == 'OPTIONS':
        return _preflight()
    body = _json_body()
    try:
        result = clear_stale_locks(
            get_repository(),
            domains=body.get('domains'),
            cleared_by=body.get('cleared_by') or 'admin',
        )
        return jsonify(result), 200
    except Exception as e:
        logger.error(f"Error clearing stale locks: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500


@functions_bp.route('/inspect-sync-jobs', methods=['GET', 'POST', 'OPTIONS'])
@require_service_auth
def inspect_sync_jobs_route():
    """Queue counts, samples and top errors"""
    if request.method == 'OPTIONS':
        return _preflight()
    try:
        return jsonify(inspect_sync_jobs(get_repository())), 200
    except Exception as e:
        logger.error(f"Error inspecting sync jobs: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500
