"""
Post Publish Processor

Executes one publish job:
- loads the post and the targets named in the job payload
- marks the targets (and the post) PUBLISHING
- publishes to every target in parallel through the platform publishers
- writes each target's outcome separately, so one bad write does not lose the rest
- recomputes the post status from all of its links and records the activity

Targets are claimed one by one (DRAFT/SCHEDULED/FAILED -> PUBLISHING), so two
runs never publish the same target, and targets already PUBLISHED are never
published again. A job that is retried after a crash only touches the targets
that did not make it; targets left PUBLISHING by a run that lost its lease are
settled as failed instead of being sent a second time.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..clock import Clock, utcnow
from ..config import get_settings
from ..errors import PostNotFoundError
from ..logging_config import publisher_logger, timed, worker_logger
from ..models.job import QueueJob
from ..models.post import PostStatus
from ..publishers import PublishAccount, PublishContent, PublishOutcome, PublisherRegistry
from ..queue.payload import JobKind, PostPublishJobData
from ..status import recompute_post_status
from ..store import LinkResult, PostStore


@dataclass
class PublishSummary:
    post_id: str
    status: Optional[PostStatus] = None
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> Dict:
        return {
            "post_id": self.post_id,
            "status": self.status.value if self.status else None,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }


INTERRUPTED_MESSAGE = "Publishing was interrupted; check the platform before retrying"


class LinkWriteError(Exception):
    """One or more link results could not be stored"""


class PostPublishProcessor:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        publishers: Optional[PublisherRegistry] = None,
        max_parallel: Optional[int] = None,
        clock: Optional[Clock] = None,
    ):
        self.session_factory = session_factory
        self.publishers = publishers or PublisherRegistry()
        self.max_parallel = max(1, max_parallel or get_settings().publish_max_parallel)
        self.clock = clock or utcnow

    def process(self, job: QueueJob) -> PublishSummary:
        data = PostPublishJobData.from_payload(job.payload)
        log = worker_logger.bind(job_id=job.id, post_id=data.post_id, kind=data.kind.value)
        log.info("Processing post publish job", attempt=job.attempts, platforms=len(data.platform_ids))

        claimed: List[str] = []
        try:
            begun = self._begin(job, data, log)
            if begun is None:
                log.info("Job cancelled before publishing, skipping")
                return PublishSummary(post_id=data.post_id, skipped=True)

            targets, content, interrupted = begun
            claimed = [t.social_account_id for t in targets]
            summary = PublishSummary(post_id=data.post_id, failed=list(interrupted))
            if targets:
                outcomes = self._publish_all(targets, content)
                self._write_results(data.post_id, targets, outcomes, summary, log)
            else:
                log.info("No unpublished targets left, nothing to publish")
            summary.status = self._finish(data, len(targets) + len(interrupted), summary)
        except Exception as e:
            log.error("Publish job failed", error=e)
            self._mark_failed(data.post_id, claimed, log)
            raise

        log.info(
            "Post publish job finished",
            status=summary.status.value,
            succeeded=len(summary.succeeded),
            failed=len(summary.failed),
        )
        return summary

    # ============================================================
    # PHASES
    # ============================================================

    def _begin(
        self, job: QueueJob, data: PostPublishJobData, log
    ) -> Optional[Tuple[List[PublishAccount], PublishContent, List[str]]]:
        """Resolve and claim the targets in one commit.

        Returns None when the job was cancelled after it was claimed.
        Otherwise returns the claimed targets, the content and the links
        settled as interrupted.
        """
        db = self.session_factory()
        try:
            # The claimed row is a snapshot; a cancel may have landed since
            cancelled = db.execute(
                select(QueueJob.cancel_requested).where(QueueJob.id == job.id)
            ).scalar_one_or_none()
            if job.cancel_requested or cancelled:
                return None

            store = PostStore(db)
            post = store.find_post(data.post_id)
            if post is None:
                raise PostNotFoundError(data.post_id)

            if data.kind == JobKind.PUBLISH and post.status != PostStatus.SCHEDULED:
                # The post was cancelled or changed after the job was queued
                log.warning("Post is not scheduled, publishing anyway", status=post.status)

            wanted = set(data.platform_ids)
            links = [link for link in post.platform_links if link.social_account_id in wanted]
            in_flight = [link for link in links if link.status == PostStatus.PUBLISHING]

            interrupted: List[str] = []
            if in_flight and job.stalled_count:
                # An earlier run of this job lost its lease mid-publish; the
                # platform may or may not have the post, so never send it again
                for link in in_flight:
                    store.update_platform_link_result(data.post_id, link.social_account_id, LinkResult(
                        status=PostStatus.FAILED,
                        error_message=INTERRUPTED_MESSAGE,
                    ))
                    store.record_publish_error(
                        data.post_id, link.social_account_id, link.social_account.platform, INTERRUPTED_MESSAGE
                    )
                    interrupted.append(link.social_account_id)
                log.warning("Settled targets of an interrupted run as failed", account_ids=interrupted)
            elif in_flight:
                log.info(
                    "Targets are being published by another job, leaving them",
                    account_ids=[link.social_account_id for link in in_flight],
                )

            claimed = set(store.claim_platform_links(data.post_id, [
                link.social_account_id
                for link in links
                if link.status not in (PostStatus.PUBLISHING, PostStatus.PUBLISHED)
                and link.social_account_id not in interrupted
            ]))
            targets = [
                PublishAccount(
                    social_account_id=link.social_account_id,
                    platform=link.social_account.platform,
                    platform_id=link.social_account.platform_account_id,
                    access_token=link.social_account.access_token,
                )
                for link in links
                if link.social_account_id in claimed
            ]
            content = PublishContent(
                caption=post.caption or "",
                post_type=post.post_type,
                media_urls=list(post.media_urls or []),
            )

            if targets:
                store.update_post_status(data.post_id, PostStatus.PUBLISHING)
            db.commit()
            return targets, content, interrupted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _publish_one(self, account: PublishAccount, content: PublishContent) -> PublishOutcome:
        publisher = self.publishers.get(account.platform)
        try:
            return publisher.publish(account, content)
        except Exception as e:
            publisher_logger.error(
                "Publisher raised",
                error=e,
                platform=account.platform,
                account_id=account.social_account_id,
            )
            return PublishOutcome.failed(str(e) or type(e).__name__)

    @timed(publisher_logger)
    def _publish_all(self, targets: List[PublishAccount], content: PublishContent) -> Dict[str, PublishOutcome]:
        outcomes: Dict[str, PublishOutcome] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_parallel, len(targets))) as pool:
            futures = {pool.submit(self._publish_one, target, content): target for target in targets}
            for future in as_completed(futures):
                outcomes[futures[future].social_account_id] = future.result()
        return outcomes

    def _write_results(
        self,
        post_id: str,
        targets: List[PublishAccount],
        outcomes: Dict[str, PublishOutcome],
        summary: PublishSummary,
        log,
    ) -> None:
        write_failures = 0
        for target in targets:
            account_id = target.social_account_id
            outcome = outcomes[account_id]
            db = self.session_factory()
            try:
                store = PostStore(db)
                if outcome.success:
                    data = outcome.data or {}
                    store.update_platform_link_result(post_id, account_id, LinkResult(
                        status=PostStatus.PUBLISHED,
                        platform_post_id=data.get("id"),
                        platform_post_url=data.get("url"),
                        published_at=self.clock(),
                    ))
                else:
                    store.update_platform_link_result(post_id, account_id, LinkResult(
                        status=PostStatus.FAILED,
                        error_message=outcome.error,
                    ))
                    store.record_publish_error(post_id, account_id, target.platform, outcome.error or "Unknown error")
                db.commit()
            except Exception as e:
                db.rollback()
                write_failures += 1
                log.error("Failed to store publish result", error=e, account_id=account_id)
                continue
            finally:
                db.close()

            if outcome.success:
                summary.succeeded.append(account_id)
            else:
                summary.failed.append(account_id)
                log.warning(
                    "Publishing to platform failed",
                    account_id=account_id,
                    platform=target.platform,
                    error_message=outcome.error,
                )

        if write_failures:
            raise LinkWriteError(f"{write_failures} publish result(s) could not be stored")

    def _finish(self, data: PostPublishJobData, attempted: int, summary: PublishSummary) -> PostStatus:
        """Recompute the aggregate status and record the activity."""
        db = self.session_factory()
        try:
            store = PostStore(db)
            links = store.list_platform_links_for_post(data.post_id)
            status = recompute_post_status(link.status for link in links)

            if summary.succeeded:
                store.update_post_status(data.post_id, status, published_at=self.clock())
            else:
                store.update_post_status(data.post_id, status)

            if attempted:
                if not summary.failed:
                    action = "published"
                elif summary.succeeded:
                    action = "publish_partial"
                else:
                    action = "publish_failed"
                post = store.find_post(data.post_id)
                store.record_activity(
                    data.workspace_id,
                    action,
                    post,
                    details=f"Published to {len(summary.succeeded)}/{attempted} platforms",
                )
            db.commit()
            return status
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _mark_failed(self, post_id: str, claimed: List[str], log) -> None:
        """Best effort: fail the post and the links this run claimed that are still in flight."""
        db = self.session_factory()
        try:
            store = PostStore(db)
            in_flight = [
                link.social_account_id
                for link in store.list_platform_links_for_post(post_id)
                if link.status == PostStatus.PUBLISHING and link.social_account_id in claimed
            ]
            if in_flight:
                store.mark_platform_links(post_id, PostStatus.FAILED, social_account_ids=in_flight)
            store.update_post_status(post_id, PostStatus.FAILED)
            db.commit()
        except Exception as e:
            db.rollback()
            log.error("Could not mark post as failed", error=e)
        finally:
            db.close()
