# Overview: Health endpoint for the API and its event store.

"""
System health endpoint.

Reports database reachability plus a few counts that make a stale or empty
event log obvious during deployment debugging.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import AllocationEvent, Extension, Machine, Site
from ..services.event_records import STATUS_PENDING
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic queries.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        details = {
            "sites": db.session.query(Site).count(),
            "machines": db.session.query(Machine).count(),
            "extensions": db.session.query(Extension).count(),
            "events": db.session.query(AllocationEvent).count(),
            "pending_events": db.session.query(AllocationEvent).filter_by(status=STATUS_PENDING).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    database_health = check_database_health()
    healthy = database_health["status"] == "healthy"
    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }
    return response, 200 if healthy else 503
