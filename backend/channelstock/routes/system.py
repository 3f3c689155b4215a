# backend/channelstock/routes/system.py
"""
System health endpoint.

Checks database connectivity and that the stock ledger holds its
0 <= sold <= received invariant.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import SalesChannel
from ..services import ledger_service
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        channel_count = db.session.query(SalesChannel).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"channels": channel_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_ledger_health() -> dict:
    """
    Any ledger row outside 0 <= sold <= received is a bug, not bad input.

    Reported as degraded: the service keeps answering so the rows can be
    inspected.
    """
    start_time = time.time()
    try:
        violations = ledger_service.find_invariant_violations()
        elapsed_ms = (time.time() - start_time) * 1000
        if violations:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"{len(violations)} ledger rows violate 0 <= sold <= received",
                "details": {"rows": [v.to_dict() for v in violations[:20]]},
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Ledger check error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    ledger_health = check_ledger_health()

    all_checks = [database_health, ledger_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "ledger": ledger_health,
        },
    }
    return response, http_status
