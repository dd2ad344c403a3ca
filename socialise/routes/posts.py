"""
Posts routes: drafts, scheduling and publishing actions.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_db
from ..dependencies import get_queue_manager, get_workspace_id
from ..limiter import limiter
from ..queue.manager import QueueManager, ScheduleOptions
from ..responses import not_found, paginated, queue_errors, success
from ..schemas.posts import PostCreate, RescheduleRequest, ScheduleRequest
from ..store import PostStore
from .serializers import parse_status_filter, post_to_dict, publish_error_to_dict

settings = get_settings()

router = APIRouter(prefix="/api/posts", tags=["posts"])


def _load_post(store: PostStore, post_id: str, workspace_id: str):
    post = store.find_post(post_id, workspace_id)
    if post is None:
        not_found("Post", post_id)
    return post


@router.get("")
def get_posts(
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    workspace_id: str = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """List the workspace's posts, newest first."""
    store = PostStore(db)
    status_filter = parse_status_filter(status)
    posts = store.list_posts(workspace_id, status=status_filter, limit=limit, offset=offset)
    total = store.count_posts(workspace_id, status=status_filter)
    return paginated([post_to_dict(p) for p in posts], total, limit=limit, offset=offset)


@router.get("/{post_id}")
def get_post(
    post_id: str,
    workspace_id: str = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """Get a post with its per-platform results."""
    post = _load_post(PostStore(db), post_id, workspace_id)
    return success(post_to_dict(post))


@router.get("/{post_id}/errors")
def get_post_errors(
    post_id: str,
    workspace_id: str = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """Publish errors recorded for a post, most recent first."""
    store = PostStore(db)
    _load_post(store, post_id, workspace_id)
    return success([publish_error_to_dict(e) for e in store.list_publish_errors(post_id)])


@router.post("", status_code=201)
@limiter.limit(settings.rate_limit)
def create_post(
    request: Request,
    post_data: PostCreate,
    workspace_id: str = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """Create a draft post targeting one or more social accounts."""
    store = PostStore(db)
    with queue_errors():
        post = store.create_post(
            workspace_id,
            caption=post_data.caption,
            social_account_ids=post_data.social_account_ids,
            post_type=post_data.post_type,
            media_urls=post_data.media_urls,
        )
    db.commit()
    return success(post_to_dict(store.find_post(post.id)), message="Post created")


# ============================================================
# QUEUE ACTIONS
# ============================================================

@router.post("/{post_id}/schedule")
@limiter.limit(settings.rate_limit)
def schedule_post(
    request: Request,
    post_id: str,
    schedule: ScheduleRequest,
    workspace_id: str = Depends(get_workspace_id),
    manager: QueueManager = Depends(get_queue_manager),
):
    """Schedule a draft (or failed) post for a future time."""
    with queue_errors():
        result = manager.schedule_post(post_id, workspace_id, ScheduleOptions(
            datetime=schedule.datetime,
            timezone=schedule.timezone,
            platforms=schedule.platforms,
        ))
    return success({
        "job_id": result.job_id,
        "scheduled_at": result.scheduled_at.isoformat(),
        "delay_ms": result.delay_ms,
    }, message="Post scheduled")


@router.post("/{post_id}/reschedule")
@limiter.limit(settings.rate_limit)
def reschedule_post(
    request: Request,
    post_id: str,
    schedule: RescheduleRequest,
    workspace_id: str = Depends(get_workspace_id),
    manager: QueueManager = Depends(get_queue_manager),
):
    """Move a scheduled post to a new time."""
    with queue_errors():
        result = manager.reschedule_post(post_id, workspace_id, schedule.datetime)
    return success({
        "job_id": result.job_id,
        "scheduled_at": result.scheduled_at.isoformat(),
        "delay_ms": result.delay_ms,
    }, message="Post rescheduled")


@router.post("/{post_id}/cancel")
@limiter.limit(settings.rate_limit)
def cancel_post(
    request: Request,
    post_id: str,
    workspace_id: str = Depends(get_workspace_id),
    manager: QueueManager = Depends(get_queue_manager),
):
    """Cancel scheduling and return the post to draft."""
    with queue_errors():
        manager.cancel_scheduled_post(post_id, workspace_id)
    return success({"post_id": post_id}, message="Post scheduling cancelled")


@router.post("/{post_id}/publish")
@limiter.limit(settings.rate_limit)
def publish_post(
    request: Request,
    post_id: str,
    workspace_id: str = Depends(get_workspace_id),
    manager: QueueManager = Depends(get_queue_manager),
):
    """Queue the post for immediate publishing."""
    with queue_errors():
        result = manager.publish_now(post_id, workspace_id)
    return success({"job_id": result.job_id, "platform_ids": result.platform_ids}, message="Post queued for publishing")


@router.post("/{post_id}/retry")
@limiter.limit(settings.rate_limit)
def retry_post(
    request: Request,
    post_id: str,
    workspace_id: str = Depends(get_workspace_id),
    manager: QueueManager = Depends(get_queue_manager),
):
    """Retry the platforms a failed post could not be published to."""
    with queue_errors():
        result = manager.retry_failed_post(post_id, workspace_id)
    return success({"job_id": result.job_id, "platform_ids": result.platform_ids}, message="Retrying failed platforms")
