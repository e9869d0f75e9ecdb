#!/usr/bin/env python3
"""
Trader Sync Service
A Flask app exposing the sync job pipeline as /functions/v1 endpoints
"""

import os
import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from flask_cors import CORS

from config.constants import VERSION
from config.settings import Settings, get_settings
from data.repositories.repository_factory import configure_repositories
from sync_dashboard.flask_cache_utils import init_cache
from sync_dashboard.log_handler import setup_logging
from sync_dashboard.routes import admin_bp, functions_bp

logger = logging.getLogger(__name__)


def _configure_logging(settings: Settings) -> None:
    config = settings.get_logging_config()
    level = logging.DEBUG if settings.is_development_mode() else getattr(logging, str(config.get('level', 'INFO')).upper(), logging.INFO)
    setup_logging(level=level, log_file=config.get('file'), tz_name=config.get('timezone'))


def create_app(settings: Optional[Settings] = None, config_overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """Build the Flask app.

    Args:
        settings: Settings to use (defaults to the global settings)
        config_overrides: Flask config values; ``TESTING=True`` skips logging setup
            and leaves the repository container as the caller configured it
    """
    settings = settings or get_settings()

    app = Flask(__name__)
    app.secret_key = os.getenv("FLASK_SECRET_KEY", "change-me")
    if config_overrides:
        app.config.update(config_overrides)

    if not app.config.get('TESTING'):
        _configure_logging(settings)
        configure_repositories({'type': settings.get_repository_type()})

    # Function callers send the key in Authorization/apikey
    CORS(app,
         origins="*",
         allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-dispatch-invocation"],
         methods=["GET", "POST", "OPTIONS"])

    init_cache(app)

    app.register_blueprint(functions_bp)
    app.register_blueprint(admin_bp)

    @app.route('/health')
    def health():
        return jsonify({"status": "ok", "version": VERSION, "repository": settings.get_repository_type()})

    logger.info(f"Trader sync service app created (repository={settings.get_repository_type()})")
    return app


def run_server(port: int = 5000, with_scheduler: bool = False, settings: Optional[Settings] = None) -> None:
    """Serve the app with Flask's server, optionally starting the scheduler."""
    settings = settings or get_settings()
    app = create_app(settings)

    if with_scheduler or settings.get('scheduler.enabled', False):
        from sync_dashboard.scheduler import start_scheduler, shutdown_scheduler
        start_scheduler()
        try:
            app.run(host='0.0.0.0', port=port, debug=False, use_reloader=False)
        finally:
            shutdown_scheduler()
    else:
        app.run(host='0.0.0.0', port=port, debug=settings.is_development_mode())


if __name__ == '__main__':
    run_server(port=int(os.getenv("PORT", "5000")))
