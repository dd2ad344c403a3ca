from .activity import Activity
from .job import JobState, QueueJob
from .post import Post, PlatformLink, PostStatus, PostType, PublishError
from .social_account import SocialAccount

__all__ = [
    "Activity",
    "JobState",
    "QueueJob",
    "Post",
    "PlatformLink",
    "PostStatus",
    "PostType",
    "PublishError",
    "SocialAccount",
]
