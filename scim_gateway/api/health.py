"""Health check endpoints."""
from flask import Blueprint, current_app

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Liveness: the process is serving requests."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Readiness: schemas have been compiled at least once."""
    cache = current_app.config.get("SCHEMA_CACHE")
    if cache is None or not cache.is_initialized():
        return ("not ready", 503, {"Content-Type": "text/plain"})
    return ("ready", 200, {"Content-Type": "text/plain"})
