from .base import BasePublisher, PublishAccount, PublishContent, PublishOutcome
from .platforms import FacebookPublisher, InstagramPublisher, PublisherRegistry, UnsupportedPublisher

__all__ = [
    "BasePublisher",
    "PublishAccount",
    "PublishContent",
    "PublishOutcome",
    "FacebookPublisher",
    "InstagramPublisher",
    "PublisherRegistry",
    "UnsupportedPublisher",
]
