# flask_app/routes/__init__.py
"""
Application routes package
"""

from .api import register_api_routes
from .auth import register_auth_routes
from .health import register_health_routes
from .staff import register_staff_routes


def init_routes(app):
    """Initialize all application routes"""
    register_health_routes(app)
    register_auth_routes(app)
    register_staff_routes(app)
    register_api_routes(app)
