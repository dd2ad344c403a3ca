"""
Socialise Health Check Routes
Liveness and readiness probes for the API and the publish queue
"""
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_db
from ..dependencies import get_queue
from ..queue.delayed_queue import DelayedJobQueue

router = APIRouter(prefix="/api/health", tags=["health"])

settings = get_settings()

START_TIME = datetime.now(timezone.utc)


def get_uptime() -> str:
    """Get service uptime as human-readable string"""
    delta = datetime.now(timezone.utc) - START_TIME
    hours, remainder = divmod(delta.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    if delta.days > 0:
        return f"{delta.days}d {hours}h {minutes}m"
    elif hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    else:
        return f"{minutes}m {seconds}s"


def check_database(db: Session) -> Dict[str, Any]:
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


def check_queue(queue: DelayedJobQueue) -> Dict[str, Any]:
    try:
        counts = queue.get_counts()
        return {"status": "healthy", "name": queue.name, "counts": counts}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


# ============================================================
# ROUTES
# ============================================================

@router.get("")
@router.get("/live")
def health_live():
    """Liveness probe - is the service running?"""
    return {
        "ok": True,
        "status": "alive",
        "environment": settings.environment,
        "uptime": get_uptime(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
def health_ready(
    db: Session = Depends(get_db),
    queue: DelayedJobQueue = Depends(get_queue),
):
    """Readiness probe - can the service reach the database and the queue?"""
    database = check_database(db)
    queue_check = check_queue(queue)
    all_healthy = database["status"] == "healthy" and queue_check["status"] == "healthy"

    return {
        "ok": all_healthy,
        "status": "ready" if all_healthy else "not_ready",
        "checks": {
            "database": database,
            "queue": queue_check,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
