"""
Aggregate post status derived from the statuses of its platform links.

This is the single place where Post.status is computed from link outcomes;
the worker calls it after every batch of link writes.
"""
from typing import Iterable

from .models.post import PostStatus


def recompute_post_status(link_statuses: Iterable[str]) -> PostStatus:
    """Derive the post status from its link statuses.

    - any link in flight -> PUBLISHING
    - any link failed -> FAILED, even when others succeeded
    - every link published -> PUBLISHED
    - any link waiting for a scheduled run -> SCHEDULED
    - otherwise (including no links at all) -> DRAFT
    """
    statuses = [PostStatus(s) for s in link_statuses]

    if PostStatus.PUBLISHING in statuses:
        return PostStatus.PUBLISHING
    if PostStatus.FAILED in statuses:
        return PostStatus.FAILED
    if statuses and all(s == PostStatus.PUBLISHED for s in statuses):
        return PostStatus.PUBLISHED
    if PostStatus.SCHEDULED in statuses:
        return PostStatus.SCHEDULED
    return PostStatus.DRAFT
