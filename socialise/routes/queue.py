"""
Queue routes: upcoming posts, history, queue statistics and schedule suggestions.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_queue, get_queue_manager, get_workspace_id
from ..models.job import JobState
from ..queue.delayed_queue import DelayedJobQueue
from ..queue.manager import QueueManager
from ..responses import paginated, queue_errors, success, validation_error
from .serializers import parse_status_filter, post_to_dict

router = APIRouter(prefix="/api/queue", tags=["queue"])


@router.get("/upcoming")
def upcoming_posts(
    limit: int = Query(default=10, ge=1, le=100),
    workspace_id: str = Depends(get_workspace_id),
    manager: QueueManager = Depends(get_queue_manager),
):
    """Scheduled posts that have not reached their time yet, soonest first."""
    posts = manager.get_upcoming_posts(workspace_id, limit=limit)
    return success([post_to_dict(p) for p in posts])


@router.get("/history")
def post_history(
    status: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    workspace_id: str = Depends(get_workspace_id),
    manager: QueueManager = Depends(get_queue_manager),
):
    posts, total = manager.get_post_history(workspace_id, limit=limit, offset=offset, status=parse_status_filter(status))
    return paginated([post_to_dict(p) for p in posts], total, limit=limit, offset=offset)


@router.get("/stats")
def queue_stats(
    workspace_id: str = Depends(get_workspace_id),
    manager: QueueManager = Depends(get_queue_manager),
):
    """Job counts per state (queue-wide, cached briefly)."""
    with queue_errors():
        return success(manager.get_queue_stats())


@router.get("/jobs")
def list_jobs(
    state: Optional[str] = None,
    workspace_id: str = Depends(get_workspace_id),
    queue: DelayedJobQueue = Depends(get_queue),
):
    """Jobs of this workspace's posts, optionally filtered by state."""
    if state and state not in JobState.ALL:
        validation_error(f"Unknown job state: {state}", {"field": "state"})
    states = [state] if state else list(JobState.ALL)
    with queue_errors():
        jobs = queue.get_jobs(states)
    return success([
        job.to_dict() for job in jobs
        if (job.payload or {}).get("workspaceId") == workspace_id
    ])


@router.get("/weekly-schedule")
def weekly_schedule(
    posts_per_week: int = Query(default=7, ge=0, le=21),
    platforms: List[str] = Query(default=[]),
    timezone: str = "UTC",
    workspace_id: str = Depends(get_workspace_id),
    manager: QueueManager = Depends(get_queue_manager),
):
    """Suggested posting slots for the next seven days, in the caller's timezone."""
    with queue_errors():
        suggestions = manager.generate_weekly_schedule(workspace_id, posts_per_week, platforms, timezone=timezone)
    return success([
        {
            "date": s.date.isoformat(),
            "platforms": s.platforms,
            "reason": s.reason,
        }
        for s in suggestions
    ])
