# flask_app/routes/health.py

"""
Health check and Prometheus metrics endpoints
"""

from flask import Response, current_app, jsonify
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from flask_app.models import db


def register_health_routes(app):
    """Register health and metrics routes"""

    health_endpoint = app.config.get("HEALTH_CHECK_ENDPOINT", "/health")
    metrics_endpoint = app.config.get("METRICS_ENDPOINT", "/metrics")

    @app.route(health_endpoint, methods=["GET"])
    def health_check():
        """Liveness plus a database round trip. Unauthenticated."""
        database_ok = True
        try:
            db.session.execute(text("SELECT 1"))
        except Exception as e:
            db.session.rollback()
            database_ok = False
            current_app.logger.error(f"Health check database error: {str(e)}")

        sync_state = current_app.extensions.get("sync", {})
        scheduler = sync_state.get("scheduler")
        payload = {
            "status": "healthy" if database_ok else "unhealthy",
            "database": "ok" if database_ok else "error",
            "version": current_app.config.get("APP_VERSION"),
            "scheduler": scheduler.state.value if scheduler is not None else "not_started",
        }
        return jsonify(payload), 200 if database_ok else 503

    @app.route(metrics_endpoint, methods=["GET"])
    def prometheus_metrics():
        if not current_app.config.get("MONITORING_ENABLED", False):
            return jsonify({"error": "Metrics are disabled"}), 404
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)
