"""
FastAPI dependencies shared by the routes.
"""
from functools import lru_cache

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from .cache import TTLCache
from .clock import Clock, utcnow
from .config import get_settings
from .database import engine, get_db
from .queue.delayed_queue import DelayedJobQueue
from .queue.manager import QueueManager
from .responses import require_workspace


@lru_cache()
def get_queue() -> DelayedJobQueue:
    """Process-wide publish queue on the main database"""
    return DelayedJobQueue(engine)


@lru_cache()
def get_stats_cache() -> TTLCache:
    return TTLCache(get_settings().stats_cache_ttl_seconds)


def get_clock() -> Clock:
    return utcnow


def get_workspace_id(x_workspace_id: str = Header(default=None)) -> str:
    """Workspace scope of the request (authentication happens upstream)."""
    return require_workspace(x_workspace_id)


def get_queue_manager(
    db: Session = Depends(get_db),
    queue: DelayedJobQueue = Depends(get_queue),
    cache: TTLCache = Depends(get_stats_cache),
    clock: Clock = Depends(get_clock),
) -> QueueManager:
    return QueueManager(db, queue, clock=clock, cache=cache)
