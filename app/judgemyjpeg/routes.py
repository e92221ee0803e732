from flask import Blueprint, current_app

from app.judgemyjpeg.cache_policy import policy_manifest
from app.judgemyjpeg.db import ping_database
from app.judgemyjpeg.utils import isoformat, utcnow

bp = Blueprint("routes", __name__)

API_VERSION = "1.0.0"


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for load balancers. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/api/health")
def api_health():
    """Deep health check: database round trip."""
    ok, elapsed_ms = ping_database(current_app)
    body = {
        "status": "healthy" if ok else "unhealthy",
        "timestamp": isoformat(utcnow()),
        "services": {
            "database": {
                "status": "up" if ok else "down",
                "responseTime": round(elapsed_ms, 1),
            }
        },
        "version": API_VERSION,
    }
    return body, 200 if ok else 503


@bp.get("/api/cache-policy")
def cache_policy():
    """Strategy table the service worker mirrors."""
    return policy_manifest()
