from .accounts import router as accounts_router
from .posts import router as posts_router
from .queue import router as queue_router
from .health import router as health_router

__all__ = [
    "accounts_router",
    "posts_router",
    "queue_router",
    "health_router",
]
