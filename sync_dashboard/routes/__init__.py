"""Flask blueprints for the sync service."""

from .functions_routes import functions_bp
from .admin_routes import admin_bp

__all__ = ['functions_bp', 'admin_bp']
