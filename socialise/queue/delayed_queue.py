"""
Durable Delayed Job Queue

Database-backed work queue with per-job eligibility time:
- enqueue with a delay (delayed) or immediately (waiting)
- named job identity: re-adding an existing job id returns the stored job
- atomic claim so several worker processes can share one queue
- exponential backoff for failed attempts, stalled job recovery, retention

Jobs live in the ``queue_jobs`` table of the main database, so a job insert
can join the caller's transaction (see ``QueueManager.schedule_post``).
"""
import time
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from ..clock import Clock, utcnow
from ..config import get_settings
from ..errors import QueueUnavailableError
from ..logging_config import queue_logger
from ..models.job import JobState, QueueJob


class DelayedJobQueue:
    """Named delayed queue stored in the ``queue_jobs`` table."""

    def __init__(
        self,
        bind,
        name: Optional[str] = None,
        clock: Optional[Clock] = None,
        max_attempts: Optional[int] = None,
        backoff_ms: Optional[int] = None,
        connect_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ):
        settings = get_settings()
        self.name = name or settings.queue_name
        self.clock = clock or utcnow
        self.max_attempts = max_attempts if max_attempts is not None else settings.queue_max_attempts
        self.backoff_ms = backoff_ms if backoff_ms is not None else settings.queue_backoff_ms
        self.connect_retries = max(1, connect_retries if connect_retries is not None else settings.queue_connect_retries)
        self.retry_backoff = retry_backoff if retry_backoff is not None else settings.queue_retry_backoff
        self._sessions = sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)

    # ============================================================
    # SESSION HANDLING
    # ============================================================

    def _execute(self, operation: str, fn: Callable[[Session], object], session: Optional[Session] = None):
        """Run ``fn`` in the caller's session, or in an own session with retries.

        A caller-supplied session is never committed here; the caller owns
        the transaction. Operational errors (connection lost, database
        locked) are retried with exponential backoff only when the queue
        owns the session, then surface as QueueUnavailableError.
        """
        if session is not None:
            try:
                return fn(session)
            except OperationalError as e:
                queue_logger.error(f"Queue {operation} failed", error=e, queue=self.name)
                raise QueueUnavailableError(f"Queue {operation} failed: {e}") from e

        last_error = None
        for attempt in range(self.connect_retries):
            db = self._sessions()
            try:
                result = fn(db)
                db.commit()
                return result
            except OperationalError as e:
                db.rollback()
                last_error = e
                queue_logger.warning(
                    f"Queue {operation} failed, retrying",
                    queue=self.name,
                    attempt=attempt + 1,
                    error_message=str(e),
                )
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

            if attempt < self.connect_retries - 1:
                time.sleep(self.retry_backoff * (2 ** attempt))

        queue_logger.error(f"Queue {operation} unavailable", error=last_error, queue=self.name)
        raise QueueUnavailableError(f"Queue {operation} failed after {self.connect_retries} attempts") from last_error

    # ============================================================
    # PRODUCER API
    # ============================================================

    def enqueue(
        self,
        name: str,
        payload: dict,
        delay_ms: int = 0,
        job_id: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> QueueJob:
        """Add a job; ``delay_ms == 0`` makes it eligible immediately."""
        delay_ms = max(0, int(delay_ms or 0))
        job_id = job_id or f"{name}-{time.time_ns()}"

        def _add(db: Session) -> QueueJob:
            existing = db.get(QueueJob, job_id)
            if existing is not None:
                queue_logger.info("Job id already queued, keeping existing job", job_id=job_id, state=existing.state)
                return existing

            now = self.clock()
            job = QueueJob(
                id=job_id,
                queue=self.name,
                name=name,
                state=JobState.DELAYED if delay_ms > 0 else JobState.WAITING,
                payload=payload,
                delay_ms=delay_ms,
                available_at=now + timedelta(milliseconds=delay_ms),
                attempts=0,
                max_attempts=self.max_attempts,
                cancel_requested=False,
                created_at=now,
            )
            db.add(job)
            db.flush()
            return job

        job = self._execute("enqueue", _add, session)
        queue_logger.debug("Job enqueued", job_id=job.id, name=name, delay_ms=delay_ms)
        return job

    def get_jobs(self, states: Sequence[str], session: Optional[Session] = None) -> List[QueueJob]:
        """Jobs currently in any of the given states, oldest first."""
        def _list(db: Session) -> List[QueueJob]:
            return list(db.execute(
                select(QueueJob)
                .where(QueueJob.queue == self.name, QueueJob.state.in_(list(states)))
                .order_by(QueueJob.created_at)
            ).scalars())

        return self._execute("get_jobs", _list, session)

    def get_job(self, job_id: str, session: Optional[Session] = None) -> Optional[QueueJob]:
        return self._execute("get_job", lambda db: db.get(QueueJob, job_id), session)

    def remove(self, job: QueueJob, session: Optional[Session] = None) -> bool:
        """Delete a job that has not started yet.

        Returns False (and logs) when the job is already active or finished.
        """
        def _delete(db: Session) -> int:
            result = db.execute(
                delete(QueueJob)
                .where(QueueJob.id == job.id, QueueJob.state.in_(JobState.PENDING))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

        removed = self._execute("remove", _delete, session) == 1
        if not removed:
            queue_logger.warning("Job could not be removed, it already started", job_id=job.id)
        return removed

    def request_cancel(self, post_id: str, session: Optional[Session] = None) -> int:
        """Flag active jobs of a post so the worker skips them on pickup."""
        def _flag(db: Session) -> int:
            active = db.execute(
                select(QueueJob).where(QueueJob.queue == self.name, QueueJob.state == JobState.ACTIVE)
            ).scalars()
            flagged = 0
            for job in active:
                if job.post_id == post_id and not job.cancel_requested:
                    job.cancel_requested = True
                    flagged += 1
            db.flush()
            return flagged

        return self._execute("request_cancel", _flag, session)

    def is_cancel_requested(self, job_id: str) -> bool:
        def _check(db: Session) -> bool:
            value = db.execute(select(QueueJob.cancel_requested).where(QueueJob.id == job_id)).scalar_one_or_none()
            return bool(value)

        return self._execute("is_cancel_requested", _check)

    # ============================================================
    # CONSUMER API
    # ============================================================

    def claim_next(self, worker_id: str) -> Optional[QueueJob]:
        """Atomically move the next due job to ``active`` and return it."""
        def _claim(db: Session) -> Optional[QueueJob]:
            now = self.clock()
            self._promote_due(db, now)

            candidates = db.execute(
                select(QueueJob.id)
                .where(
                    QueueJob.queue == self.name,
                    QueueJob.state == JobState.WAITING,
                    QueueJob.available_at <= now,
                )
                .order_by(QueueJob.available_at, QueueJob.created_at)
                .limit(10)
            ).scalars().all()

            for job_id in candidates:
                # Conditional update: only one worker wins a given job
                result = db.execute(
                    update(QueueJob)
                    .where(QueueJob.id == job_id, QueueJob.state == JobState.WAITING)
                    .values(
                        state=JobState.ACTIVE,
                        locked_by=worker_id,
                        started_at=now,
                        heartbeat_at=now,
                        attempts=QueueJob.attempts + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    return db.get(QueueJob, job_id, populate_existing=True)
            return None

        return self._execute("claim", _claim)

    def _promote_due(self, db: Session, now) -> int:
        result = db.execute(
            update(QueueJob)
            .where(
                QueueJob.queue == self.name,
                QueueJob.state == JobState.DELAYED,
                QueueJob.available_at <= now,
            )
            .values(state=JobState.WAITING)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def _holds_lease(self, job: QueueJob):
        return (
            (QueueJob.id == job.id)
            & (QueueJob.state == JobState.ACTIVE)
            & (QueueJob.locked_by == job.locked_by)
        )

    def heartbeat(self, job: QueueJob) -> bool:
        """Renew the lease on an active job.

        Returns False when the job is no longer held by ``job.locked_by``
        (requeued as stalled, or finished by someone else).
        """
        def _renew(db: Session) -> int:
            result = db.execute(
                update(QueueJob)
                .where(self._holds_lease(job))
                .values(heartbeat_at=self.clock())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

        return self._execute("heartbeat", _renew) == 1

    def complete(self, job: QueueJob) -> bool:
        """Mark the job completed if the caller still holds its lease."""
        def _complete(db: Session) -> int:
            result = db.execute(
                update(QueueJob)
                .where(self._holds_lease(job))
                .values(state=JobState.COMPLETED, finished_at=self.clock(), locked_by=None)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

        completed = self._execute("complete", _complete) == 1
        if not completed:
            queue_logger.warning("Lease lost, job not marked completed", job_id=job.id, consumer=job.locked_by)
        return completed

    def fail(self, job: QueueJob, error: str) -> str:
        """Record a failed attempt; re-delay with backoff or mark failed.

        Returns the resulting state. A caller that lost the lease changes
        nothing and gets the job's current state back.
        """
        def _fail(db: Session) -> str:
            stored = db.get(QueueJob, job.id)
            if stored is None:
                return JobState.FAILED
            if stored.state != JobState.ACTIVE or stored.locked_by != job.locked_by:
                queue_logger.warning("Lease lost, failed attempt not recorded", job_id=job.id, consumer=job.locked_by)
                return stored.state
            now = self.clock()
            stored.last_error = error
            stored.locked_by = None
            if stored.attempts >= stored.max_attempts:
                stored.state = JobState.FAILED
                stored.finished_at = now
            else:
                backoff = self.backoff_ms * (2 ** max(0, stored.attempts - 1))
                stored.state = JobState.DELAYED
                stored.available_at = now + timedelta(milliseconds=backoff)
            db.flush()
            return stored.state

        state = self._execute("fail", _fail)
        queue_logger.warning("Job attempt failed", job_id=job.id, state=state, error_message=error)
        return state

    # ============================================================
    # MAINTENANCE
    # ============================================================

    def requeue_stalled(self, stall_timeout_seconds: int) -> int:
        """Return active jobs whose lease was not renewed in time to ``waiting``.

        ``stalled_count`` is bumped so the next consumer knows an earlier
        run may have stopped half way.
        """
        def _requeue(db: Session) -> int:
            cutoff = self.clock() - timedelta(seconds=stall_timeout_seconds)
            result = db.execute(
                update(QueueJob)
                .where(
                    QueueJob.queue == self.name,
                    QueueJob.state == JobState.ACTIVE,
                    func.coalesce(QueueJob.heartbeat_at, QueueJob.started_at) < cutoff,
                )
                .values(state=JobState.WAITING, locked_by=None, stalled_count=QueueJob.stalled_count + 1)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

        count = self._execute("requeue_stalled", _requeue)
        if count:
            queue_logger.warning("Requeued stalled jobs", count=count)
        return count

    def clean(self, completed_age_seconds: int, failed_age_seconds: int) -> int:
        """Delete finished jobs older than their retention window."""
        def _clean(db: Session) -> int:
            now = self.clock()
            removed = 0
            for state, age in ((JobState.COMPLETED, completed_age_seconds), (JobState.FAILED, failed_age_seconds)):
                result = db.execute(
                    delete(QueueJob)
                    .where(
                        QueueJob.queue == self.name,
                        QueueJob.state == state,
                        QueueJob.finished_at < now - timedelta(seconds=age),
                    )
                    .execution_options(synchronize_session=False)
                )
                removed += result.rowcount
            return removed

        return self._execute("clean", _clean)

    # ============================================================
    # COUNTS (observability only)
    # ============================================================

    def get_counts(self, session: Optional[Session] = None) -> Dict[str, int]:
        def _counts(db: Session) -> Dict[str, int]:
            now = self.clock()
            due = QueueJob.available_at <= now
            rows = db.execute(
                select(QueueJob.state, due, func.count())
                .where(QueueJob.queue == self.name)
                .group_by(QueueJob.state, due)
            ).all()

            counts = {state: 0 for state in JobState.ALL}
            for state, is_due, n in rows:
                # Due delayed jobs are waiting for the next claim to promote them
                if state == JobState.DELAYED and is_due:
                    counts[JobState.WAITING] += n
                else:
                    counts[state] = counts.get(state, 0) + n
            return counts

        return self._execute("get_counts", _counts, session)

    def get_waiting_count(self) -> int:
        return self.get_counts()[JobState.WAITING]

    def get_active_count(self) -> int:
        return self.get_counts()[JobState.ACTIVE]

    def get_completed_count(self) -> int:
        return self.get_counts()[JobState.COMPLETED]

    def get_failed_count(self) -> int:
        return self.get_counts()[JobState.FAILED]

    def get_delayed_count(self) -> int:
        return self.get_counts()[JobState.DELAYED]
