"""
Model to response dict conversion shared by the routes.
"""
from datetime import datetime
from typing import Optional

from ..clock import as_utc
from ..models.post import Post, PlatformLink, PostStatus, PublishError
from ..models.social_account import SocialAccount
from ..responses import validation_error


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


def account_to_dict(account: SocialAccount) -> dict:
    # Access tokens never leave the API
    return {
        "id": account.id,
        "platform": account.platform,
        "name": account.name,
        "platform_account_id": account.platform_account_id,
        "connected": bool(account.access_token),
        "created_at": _iso(account.created_at),
    }


def link_to_dict(link: PlatformLink) -> dict:
    account = link.social_account
    return {
        "social_account_id": link.social_account_id,
        "platform": account.platform if account else None,
        "account_name": account.name if account else None,
        "status": link.status,
        "platform_post_id": link.platform_post_id,
        "platform_post_url": link.platform_post_url,
        "published_at": _iso(link.published_at),
        "error_message": link.error_message,
    }


def post_to_dict(post: Post) -> dict:
    return {
        "id": post.id,
        "workspace_id": post.workspace_id,
        "caption": post.caption,
        "post_type": post.post_type,
        "media_urls": post.media_urls or [],
        "status": post.status,
        "scheduled_at": _iso(post.scheduled_at),
        "published_at": _iso(post.published_at),
        "created_at": _iso(post.created_at),
        "platforms": [link_to_dict(link) for link in post.platform_links],
    }


def publish_error_to_dict(error: PublishError) -> dict:
    return {
        "social_account_id": error.social_account_id,
        "platform": error.platform,
        "error_code": error.error_code,
        "error": error.error_human,
        "suggestion": error.suggestion,
        "created_at": _iso(error.created_at),
    }


def parse_status_filter(status: Optional[str]) -> Optional[PostStatus]:
    if not status:
        return None
    try:
        return PostStatus(status.upper())
    except ValueError:
        validation_error(f"Unknown post status: {status}", {"field": "status"})
