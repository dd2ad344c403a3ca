"""
Post Queue Manager

Turns posts into delayed publish jobs and drives the post state machine:

    DRAFT -> SCHEDULED -> PUBLISHING -> PUBLISHED | FAILED
    SCHEDULED -> DRAFT      (cancel)
    FAILED -> SCHEDULED     (retry, failed targets only)

The PUBLISHING/PUBLISHED/FAILED transitions happen in the worker
(see ``socialise.worker.processor``); this module only enqueues and
moves posts between DRAFT, SCHEDULED and the retry re-entry.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..cache import TTLCache
from ..clock import Clock, as_utc, get_zone, to_millis, utcnow
from ..errors import ConcurrentModificationError, InvalidPostStateError, PostNotFoundError
from ..logging_config import queue_logger
from ..models.job import JobState
from ..models.post import Post, PostStatus
from ..store import PostStore
from .delayed_queue import DelayedJobQueue
from .payload import JobKind, PostPublishJobData

SCHEDULABLE_STATUSES = (PostStatus.DRAFT, PostStatus.FAILED)

OPTIMAL_TIMES = [
    (9, 0, "Morning commute engagement"),
    (12, 0, "Lunch break browsing"),
    (19, 30, "Peak evening engagement"),
]

QUEUE_STATS_CACHE_KEY = "queue-stats"


@dataclass
class ScheduleOptions:
    datetime: datetime
    timezone: str = "UTC"  # used when ``datetime`` is naive
    platforms: List[str] = field(default_factory=list)  # informational; targets come from the post


@dataclass
class ScheduleResult:
    success: bool
    scheduled_at: datetime
    job_id: str
    delay_ms: int


@dataclass
class EnqueueResult:
    success: bool
    job_id: str
    platform_ids: List[str] = field(default_factory=list)


@dataclass
class ScheduleSuggestion:
    date: datetime
    platforms: List[str]
    reason: str


class QueueManager:
    """Schedules, cancels, reschedules and retries post publishing."""

    def __init__(
        self,
        session: Session,
        queue: DelayedJobQueue,
        clock: Optional[Clock] = None,
        cache: Optional[TTLCache] = None,
    ):
        self.session = session
        self.store = PostStore(session)
        self.queue = queue
        self.clock = clock or utcnow
        self.cache = cache

    # ============================================================
    # HELPERS
    # ============================================================

    def _get_post(self, post_id: str, workspace_id: Optional[str]) -> Post:
        post = self.store.find_post(post_id, workspace_id)
        if post is None:
            raise PostNotFoundError(post_id)
        return post

    def _mint_job_id(self, prefix: str, post_id: str, session: Optional[Session] = None) -> str:
        """Fresh job id of the form ``{prefix}-{postId}-{epochMs}``.

        The millisecond part is bumped past ids that already exist so a
        repeated operation never collides with an older job of the same post.
        """
        now_ms = to_millis(self.clock())
        while self.queue.get_job(f"{prefix}-{post_id}-{now_ms}", session=session) is not None:
            now_ms += 1
        return f"{prefix}-{post_id}-{now_ms}"

    def _resolve_datetime(self, options: ScheduleOptions) -> datetime:
        value = options.datetime
        if value.tzinfo is None:
            value = value.replace(tzinfo=get_zone(options.timezone))
        return as_utc(value)

    def _invalidate_stats(self) -> None:
        if self.cache is not None:
            self.cache.invalidate(QUEUE_STATS_CACHE_KEY)

    # ============================================================
    # SCHEDULING
    # ============================================================

    def schedule_post(self, post_id: str, workspace_id: str, options: ScheduleOptions) -> ScheduleResult:
        """Create a delayed publish job and mark the post SCHEDULED.

        The job insert and the status change commit together. The status
        write is conditional on the post still being DRAFT or FAILED, so two
        concurrent calls cannot both schedule the same post.
        """
        scheduled_at = self._resolve_datetime(options)
        now = self.clock()
        delay_ms = max(0, int((scheduled_at - now).total_seconds() * 1000))

        post = self._get_post(post_id, workspace_id)
        if post.status not in SCHEDULABLE_STATUSES:
            raise InvalidPostStateError(f"Cannot schedule post in {post.status} status")

        platform_ids = [link.social_account_id for link in post.platform_links]
        if not platform_ids:
            raise InvalidPostStateError("Post has no platforms to publish to")

        job_data = PostPublishJobData(
            post_id=post_id,
            workspace_id=workspace_id,
            platform_ids=platform_ids,
            scheduled_at=scheduled_at,
            kind=JobKind.PUBLISH,
        )

        try:
            job = self.queue.enqueue(
                f"publish-{post_id}",
                job_data.to_payload(),
                delay_ms=delay_ms,
                job_id=self._mint_job_id("post", post_id, self.session),
                session=self.session,
            )
            updated = self.store.update_post_status(
                post_id,
                PostStatus.SCHEDULED,
                scheduled_at=scheduled_at,
                expected=SCHEDULABLE_STATUSES,
            )
            if not updated:
                raise ConcurrentModificationError(f"Post {post_id} changed status while being scheduled")
            self.store.mark_platform_links(post_id, PostStatus.SCHEDULED, exclude=[PostStatus.PUBLISHED])
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self._invalidate_stats()
        queue_logger.info(
            "Post scheduled for publishing",
            post_id=post_id,
            job_id=job.id,
            delay_ms=delay_ms,
            scheduled_at=scheduled_at.isoformat(),
        )
        return ScheduleResult(success=True, scheduled_at=scheduled_at, job_id=job.id, delay_ms=delay_ms)

    def cancel_scheduled_post(self, post_id: str, workspace_id: Optional[str] = None) -> bool:
        """Remove pending jobs for a post and return it to DRAFT.

        Safe to call repeatedly; always returns True. Jobs already picked up
        by a worker cannot be removed; they are flagged so the worker skips
        them if it has not started publishing yet.
        """
        if workspace_id is not None:
            self._get_post(post_id, workspace_id)

        try:
            pending = self.queue.get_jobs(JobState.PENDING, session=self.session)
            for job in pending:
                if job.post_id == post_id:
                    if self.queue.remove(job, session=self.session):
                        queue_logger.info("Removed scheduled job", post_id=post_id, job_id=job.id)

            flagged = self.queue.request_cancel(post_id, session=self.session)
            if flagged:
                queue_logger.warning("Post has in-flight jobs, requested cancellation", post_id=post_id, jobs=flagged)

            self.store.update_post_status(post_id, PostStatus.DRAFT, scheduled_at=None)
            self.store.mark_platform_links(post_id, PostStatus.DRAFT, exclude=[PostStatus.PUBLISHED])
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self._invalidate_stats()
        queue_logger.info("Post scheduling cancelled", post_id=post_id)
        return True

    def reschedule_post(self, post_id: str, workspace_id: str, new_datetime: datetime) -> ScheduleResult:
        """Cancel then schedule again; the two steps are not atomic."""
        self.cancel_scheduled_post(post_id, workspace_id)
        return self.schedule_post(
            post_id,
            workspace_id,
            ScheduleOptions(datetime=new_datetime, timezone="UTC", platforms=[]),
        )

    def publish_now(self, post_id: str, workspace_id: str) -> EnqueueResult:
        """Queue the post for immediate publishing to all of its targets.

        The post status is left as-is; the worker moves it to PUBLISHING.
        """
        post = self._get_post(post_id, workspace_id)
        platform_ids = [link.social_account_id for link in post.platform_links]
        if not platform_ids:
            raise InvalidPostStateError("Post has no platforms to publish to")
        if all(link.status == PostStatus.PUBLISHED for link in post.platform_links):
            # The worker would skip every target
            raise InvalidPostStateError("Post is already published to all platforms")

        job_data = PostPublishJobData(
            post_id=post_id,
            workspace_id=workspace_id,
            platform_ids=platform_ids,
            kind=JobKind.PUBLISH_NOW,
        )
        job = self.queue.enqueue(
            f"publish-now-{post_id}",
            job_data.to_payload(),
            job_id=self._mint_job_id("post-now", post_id),
        )

        self._invalidate_stats()
        queue_logger.info("Post queued for immediate publishing", post_id=post_id, job_id=job.id)
        return EnqueueResult(success=True, job_id=job.id, platform_ids=platform_ids)

    def retry_failed_post(self, post_id: str, workspace_id: str) -> EnqueueResult:
        """Re-queue only the targets that failed; published targets are left alone."""
        post = self._get_post(post_id, workspace_id)
        if post.status != PostStatus.FAILED:
            raise InvalidPostStateError("Post is not in FAILED status")

        failed_platform_ids = [
            link.social_account_id
            for link in post.platform_links
            if link.status == PostStatus.FAILED
        ]
        if not failed_platform_ids:
            raise InvalidPostStateError("Post has no failed platforms to retry")

        now = self.clock()
        job_data = PostPublishJobData(
            post_id=post_id,
            workspace_id=workspace_id,
            platform_ids=failed_platform_ids,
            is_retry=True,
            kind=JobKind.RETRY,
        )

        try:
            job = self.queue.enqueue(
                f"retry-{post_id}",
                job_data.to_payload(),
                job_id=self._mint_job_id("post-retry", post_id, self.session),
                session=self.session,
            )
            updated = self.store.update_post_status(
                post_id,
                PostStatus.SCHEDULED,
                scheduled_at=now,
                expected=[PostStatus.FAILED],
            )
            if not updated:
                raise ConcurrentModificationError(f"Post {post_id} changed status while being retried")
            self.store.mark_platform_links(post_id, PostStatus.SCHEDULED, social_account_ids=failed_platform_ids)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self._invalidate_stats()
        queue_logger.info(
            "Retrying failed post",
            post_id=post_id,
            job_id=job.id,
            failed_platform_ids=failed_platform_ids,
        )
        return EnqueueResult(success=True, job_id=job.id, platform_ids=failed_platform_ids)

    # ============================================================
    # READ-ONLY PROJECTIONS
    # ============================================================

    def get_upcoming_posts(self, workspace_id: str, limit: int = 10) -> List[Post]:
        return self.store.list_upcoming(workspace_id, self.clock(), limit)

    def get_post_history(
        self,
        workspace_id: str,
        limit: int = 20,
        offset: int = 0,
        status: Optional[PostStatus] = None,
    ) -> Tuple[List[Post], int]:
        posts = self.store.list_posts(workspace_id, status=status, limit=limit, offset=offset)
        total = self.store.count_posts(workspace_id, status=status)
        return posts, total

    def get_queue_stats(self) -> Dict[str, int]:
        if self.cache is None:
            return self.queue.get_counts()
        return self.cache.get_or_set(QUEUE_STATS_CACHE_KEY, self.queue.get_counts)

    def generate_weekly_schedule(
        self,
        workspace_id: str,
        posts_per_week: int,
        preferred_platforms: List[str],
        now: Optional[datetime] = None,
        timezone: str = "UTC",
    ) -> List[ScheduleSuggestion]:
        """Suggest posting slots for the next seven days from fixed optimal times.

        Days and slot times are wall-clock times in ``timezone``; the
        returned datetimes carry that zone.
        """
        now = as_utc(now or self.clock()).astimezone(get_zone(timezone))
        suggestions: List[ScheduleSuggestion] = []
        slots_per_day = math.ceil(posts_per_week / 7) if posts_per_week > 0 else 0

        for day in range(7):
            for slot in range(slots_per_day):
                if len(suggestions) >= posts_per_week:
                    return suggestions
                hour, minute, reason = OPTIMAL_TIMES[slot % len(OPTIMAL_TIMES)]
                date = (now + timedelta(days=day)).replace(hour=hour, minute=minute, second=0, microsecond=0)
                suggestions.append(ScheduleSuggestion(
                    date=date,
                    platforms=list(preferred_platforms),
                    reason=reason,
                ))

        return suggestions
