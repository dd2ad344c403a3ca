from .delayed_queue import DelayedJobQueue
from .manager import EnqueueResult, QueueManager, ScheduleOptions, ScheduleResult, ScheduleSuggestion
from .payload import JobKind, PostPublishJobData

__all__ = [
    "DelayedJobQueue",
    "EnqueueResult",
    "QueueManager",
    "ScheduleOptions",
    "ScheduleResult",
    "ScheduleSuggestion",
    "JobKind",
    "PostPublishJobData",
]
