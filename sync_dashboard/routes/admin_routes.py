#!/usr/bin/env python3
"""
Admin Routes
============

Operator views: queue and lock status, scheduler jobs, recent
application logs, plus scheduler job and cache controls.
"""

import logging

from flask import Blueprint, jsonify, request

from config.constants import DEFAULT_LOCK_DOMAINS
from data.repositories.repository_factory import get_repository
from sync_dashboard.flask_auth_utils import require_service_auth
from sync_dashboard.flask_cache_utils import cache_data, clear_all_caches, get_cache_stats
from sync_dashboard.log_handler import get_log_handler
from sync_dashboard.scheduler.scheduler_core import get_all_jobs_status, pause_job, resume_job, run_job_now
from sync_dashboard.sync.queue_ops import inspect_sync_jobs

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


@cache_data(ttl=15)
def _get_cached_sync_status():
    """Queue inspection plus domain lock rows (15s TTL)"""
    repo = get_repository()
    domains = []
    for domain in DEFAULT_LOCK_DOMAINS:
        status = repo.get_domain_status(domain)
        domains.append(status.to_dict() if status else {'domain': domain, 'status': None})
    return {'queue': inspect_sync_jobs(repo), 'domains': domains}


def _serialize_job_status(job):
    return {
        'id': job['id'],
        'name': job['name'],
        'next_run': job['next_run'].isoformat() if job['next_run'] else None,
        'is_paused': job['is_paused'],
        'trigger': job['trigger'],
        'recent_logs': [
            {**log, 'timestamp': log['timestamp'].isoformat()} for log in job['recent_logs']
        ],
    }


@admin_bp.route('/sync/status')
@require_service_auth
def api_sync_status():
    """Queue counts, domain locks and scheduler jobs"""
    try:
        data = dict(_get_cached_sync_status())
        data['scheduler_jobs'] = [_serialize_job_status(job) for job in get_all_jobs_status()]
        return jsonify(data)
    except Exception as e:
        logger.error(f"Error in api_sync_status: {e}", exc_info=True)
        return jsonify({"error": "Failed to load sync status"}), 500


@admin_bp.route('/logs')
@require_service_auth
def api_logs():
    """Recent in-memory log records, newest first"""
    try:
        n = request.args.get('n', default=100, type=int)
        logs = get_log_handler().get_logs(
            n=n,
            level=request.args.get('level') or None,
            module=request.args.get('module') or None,
            search=request.args.get('search') or None,
        )
        serialized = [
            {**log, 'timestamp': log['timestamp'].strftime('%Y-%m-%d %H:%M:%S')} for log in reversed(logs)
        ]
        return jsonify({"logs": serialized, "count": len(serialized)})
    except Exception as e:
        logger.error(f"Error in api_logs: {e}", exc_info=True)
        return jsonify({"error": "Failed to load logs", "logs": []}), 500


@admin_bp.route('/scheduler/jobs/<job_id>/<action>', methods=['POST'])
@require_service_auth
def api_scheduler_job_action(job_id, action):
    """Run, pause or resume a scheduled job"""
    actions = {'run': run_job_now, 'pause': pause_job, 'resume': resume_job}
    if action not in actions:
        return jsonify({"success": False, "error": f"Unknown action: {action}"}), 400
    try:
        if not actions[action](job_id):
            return jsonify({"success": False, "error": f"Job not found: {job_id}"}), 404
        return jsonify({"success": True, "job_id": job_id, "action": action})
    except Exception as e:
        logger.error(f"Error in api_scheduler_job_action({job_id}, {action}): {e}", exc_info=True)
        return jsonify({"success": False, "error": str(e)}), 500


@admin_bp.route('/cache', methods=['GET'])
@require_service_auth
def api_cache_stats():
    return jsonify(get_cache_stats())


@admin_bp.route('/cache/clear', methods=['POST'])
@require_service_auth
def api_cache_clear():
    clear_all_caches()
    return jsonify({"success": True})
