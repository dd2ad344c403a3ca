"""
Publisher adapter contract.

Each platform adapter takes the target account and the post content and
returns a PublishOutcome. Adapters report failures through the outcome; an
exception escaping an adapter is treated the same way by the worker.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class PublishAccount:
    """Credentials of the account being published to"""
    social_account_id: str
    platform: str
    platform_id: Optional[str]  # page id / user id on the platform
    access_token: Optional[str]


@dataclass
class PublishContent:
    caption: str
    post_type: str = "FEED"
    media_urls: List[str] = field(default_factory=list)


@dataclass
class PublishOutcome:
    """Result of a publish attempt"""
    success: bool
    data: Optional[Dict[str, Optional[str]]] = None  # {"id": ..., "url": ...}
    error: Optional[str] = None

    @classmethod
    def ok(cls, post_id: str, url: Optional[str] = None) -> "PublishOutcome":
        return cls(success=True, data={"id": post_id, "url": url})

    @classmethod
    def failed(cls, error: str) -> "PublishOutcome":
        return cls(success=False, error=error)


class BasePublisher:
    platform = "unknown"

    def is_configured(self, account: PublishAccount) -> bool:
        return bool(account.access_token and account.platform_id)

    def publish(self, account: PublishAccount, content: PublishContent) -> PublishOutcome:
        raise NotImplementedError
