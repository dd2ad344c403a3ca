"""
QueueJob model: durable record of the delayed publish queue.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Boolean
from datetime import datetime, timezone
from ..database import Base


class JobState:
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (WAITING, DELAYED, ACTIVE, COMPLETED, FAILED)
    PENDING = (WAITING, DELAYED)


class QueueJob(Base):
    __tablename__ = "queue_jobs"

    id = Column(String(120), primary_key=True, index=True)  # caller-minted job id
    queue = Column(String(50), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    state = Column(String(20), nullable=False, default=JobState.WAITING, index=True)
    payload = Column(JSON, nullable=False)
    delay_ms = Column(Integer, nullable=False, default=0)
    available_at = Column(DateTime(timezone=True), nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    last_error = Column(Text, nullable=True)
    locked_by = Column(String(100), nullable=True)  # consumer holding the lease
    heartbeat_at = Column(DateTime(timezone=True), nullable=True)  # last lease renewal
    stalled_count = Column(Integer, nullable=False, default=0)  # requeues after a lost lease
    cancel_requested = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def post_id(self):
        return (self.payload or {}).get("postId")

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            "job_id": self.id,
            "name": self.name,
            "state": self.state,
            "payload": self.payload,
            "delay_ms": self.delay_ms,
            "available_at": self.available_at.isoformat() if self.available_at else None,
            "attempts": self.attempts,
            "stalled_count": self.stalled_count,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
