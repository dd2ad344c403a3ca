from .processor import PostPublishProcessor, PublishSummary
from .runner import PostPublisherWorker

__all__ = ["PostPublishProcessor", "PublishSummary", "PostPublisherWorker"]
