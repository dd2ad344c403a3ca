"""
Post Publisher Worker

Long-running consumer of the post-publish queue. Each worker thread claims
one due job at a time, hands it to the PostPublishProcessor and reports the
outcome back to the queue (complete, or fail with backoff). A maintenance
thread periodically requeues stalled jobs and deletes finished jobs past
their retention window. While a job runs its lease is renewed in the
background; only a job whose lease went unrenewed for the stall timeout
counts as stalled.

Run with:
    socialise-worker --concurrency 5
"""
import argparse
import os
import signal
import socket
import threading
from contextlib import contextmanager
from typing import List, Optional

from ..config import get_settings
from ..database import SessionLocal, engine, init_db
from ..logging_config import worker_logger
from ..models.job import QueueJob
from ..queue.delayed_queue import DelayedJobQueue
from .processor import PostPublishProcessor


class PostPublisherWorker:
    def __init__(
        self,
        queue: DelayedJobQueue,
        processor: PostPublishProcessor,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
        stall_timeout: Optional[int] = None,
        cleanup_interval: Optional[int] = None,
        heartbeat_interval: Optional[float] = None,
    ):
        settings = get_settings()
        self.queue = queue
        self.processor = processor
        self.concurrency = max(1, concurrency or settings.worker_concurrency)
        self.poll_interval = poll_interval if poll_interval is not None else settings.worker_poll_interval
        self.stall_timeout = stall_timeout or settings.worker_stall_timeout
        self.cleanup_interval = cleanup_interval or settings.worker_cleanup_interval
        # Well inside the stall timeout, so a slow upload keeps its job
        self.heartbeat_interval = heartbeat_interval or max(1.0, self.stall_timeout / 3)
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}"
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    # ============================================================
    # JOB LOOP
    # ============================================================

    def run_once(self, consumer_id: Optional[str] = None) -> bool:
        """Claim and process a single job. Returns False when none was due."""
        job = self.queue.claim_next(consumer_id or self.worker_id)
        if job is None:
            return False

        error = None
        with self._keep_lease(job):
            try:
                summary = self.processor.process(job)
            except Exception as e:
                error = e

        if error is not None:
            state = self.queue.fail(job, str(error) or type(error).__name__)
            worker_logger.error("Job failed", error=error, job_id=job.id, attempt=job.attempts, state=state)
            return True

        if self.queue.complete(job):
            worker_logger.info("Job completed", job_id=job.id, **summary.to_dict())
        return True

    @contextmanager
    def _keep_lease(self, job: QueueJob):
        """Renew the job's lease in the background while it is processed."""
        done = threading.Event()

        def _renew():
            while not done.wait(self.heartbeat_interval):
                try:
                    if not self.queue.heartbeat(job):
                        worker_logger.warning("Lease on job lost", job_id=job.id, consumer=job.locked_by)
                        return
                except Exception as e:
                    worker_logger.error("Lease renewal failed", error=e, job_id=job.id)

        renewer = threading.Thread(target=_renew, name=f"lease-{job.id}", daemon=True)
        renewer.start()
        try:
            yield
        finally:
            done.set()
            renewer.join()

    def _consume(self, index: int) -> None:
        consumer_id = f"{self.worker_id}-{index}"
        while not self._stop.is_set():
            try:
                worked = self.run_once(consumer_id)
            except Exception as e:
                # Queue unavailable; back off and keep the thread alive
                worker_logger.error("Worker loop error", error=e, consumer=consumer_id)
                worked = False
            if not worked:
                self._stop.wait(self.poll_interval)

    def run_maintenance(self) -> None:
        settings = get_settings()
        self.queue.requeue_stalled(self.stall_timeout)
        removed = self.queue.clean(
            settings.queue_completed_retention_seconds,
            settings.queue_failed_retention_seconds,
        )
        if removed:
            worker_logger.info("Cleaned finished jobs", removed=removed)

    def _maintain(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_maintenance()
            except Exception as e:
                worker_logger.error("Queue maintenance failed", error=e)
            self._stop.wait(self.cleanup_interval)

    # ============================================================
    # LIFECYCLE
    # ============================================================

    def start_background(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        for i in range(self.concurrency):
            thread = threading.Thread(target=self._consume, args=(i,), name=f"publisher-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)

        maintenance = threading.Thread(target=self._maintain, name="publisher-maintenance", daemon=True)
        maintenance.start()
        self._threads.append(maintenance)

        worker_logger.info(
            "Post publisher worker started",
            worker_id=self.worker_id,
            queue=self.queue.name,
            concurrency=self.concurrency,
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        worker_logger.info("Post publisher worker stopped", worker_id=self.worker_id)

    def run_forever(self) -> None:
        def _shutdown(signum, frame):
            worker_logger.info("Shutdown signal received", signal=signum)
            self._stop.set()

        signal.signal(signal.SIGINT, _shutdown)
        signal.signal(signal.SIGTERM, _shutdown)

        self.start_background()
        while not self._stop.wait(1.0):
            pass
        self.stop()


def main(argv=None):
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Publish scheduled social media posts")
    parser.add_argument("--concurrency", type=int, default=settings.worker_concurrency, help="Parallel jobs")
    parser.add_argument("--poll-interval", type=float, default=settings.worker_poll_interval, help="Seconds between polls when idle")
    args = parser.parse_args(argv)

    init_db()
    queue = DelayedJobQueue(engine)
    processor = PostPublishProcessor(SessionLocal)
    worker = PostPublisherWorker(queue, processor, concurrency=args.concurrency, poll_interval=args.poll_interval)
    worker.run_forever()


if __name__ == "__main__":
    main()
