"""
Exceptions raised by the publish queue.

Precondition violations are raised synchronously to the caller and are never
retried automatically. Queue unavailability is propagated as-is so that the
calling operation fails instead of silently dropping work.
"""


class QueueError(Exception):
    """Base class for publish queue errors."""


class PostNotFoundError(QueueError):
    def __init__(self, post_id: str):
        self.post_id = post_id
        super().__init__(f"Post not found: {post_id}")


class InvalidPostStateError(QueueError):
    """The post is not in a status that allows the requested operation."""


class ConcurrentModificationError(InvalidPostStateError):
    """The post status changed between the read and the conditional write."""


class QueueUnavailableError(QueueError):
    """The job store could not be reached after the configured retries."""
