"""
Platform Publishers

Publish post content to:
- Facebook pages (Graph API feed / photos)
- Instagram business accounts (Graph API media container + media_publish)

Other platforms are registered with a publisher that reports them as
unsupported, so the post records a readable failure instead of crashing.
"""
from typing import Dict, Optional

import requests

from ..config import get_settings
from ..logging_config import publisher_logger
from .base import BasePublisher, PublishAccount, PublishContent, PublishOutcome


def _graph_error(response: requests.Response) -> str:
    """Extract the human message from a Graph API error response"""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return f"HTTP {response.status_code}"


class GraphApiPublisher(BasePublisher):
    """Shared request handling for the Meta Graph API"""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None, session: Optional[requests.Session] = None):
        settings = get_settings()
        self.base_url = (base_url or settings.graph_api_base_url).rstrip("/")
        self.timeout = timeout or settings.publish_timeout_seconds
        self.http = session or requests.Session()

    def _post(self, path: str, data: Dict[str, str]) -> Dict:
        response = self.http.post(f"{self.base_url}/{path}", data=data, timeout=self.timeout)
        if response.status_code >= 400:
            raise PublishRequestError(_graph_error(response))
        return response.json()


class PublishRequestError(Exception):
    pass


# ============================================================
# FACEBOOK
# ============================================================

class FacebookPublisher(GraphApiPublisher):
    platform = "facebook"

    def publish(self, account: PublishAccount, content: PublishContent) -> PublishOutcome:
        if not self.is_configured(account):
            return PublishOutcome.failed("Facebook page not connected. Reconnect the account.")

        try:
            if content.media_urls:
                body = self._post(f"{account.platform_id}/photos", {
                    "url": content.media_urls[0],
                    "caption": content.caption,
                    "access_token": account.access_token,
                })
                post_id = body.get("post_id") or body["id"]
            else:
                body = self._post(f"{account.platform_id}/feed", {
                    "message": content.caption,
                    "access_token": account.access_token,
                })
                post_id = body["id"]
        except (requests.RequestException, PublishRequestError, KeyError) as e:
            publisher_logger.warning("Facebook publish failed", account_id=account.social_account_id, error_message=str(e))
            return PublishOutcome.failed(str(e) or "Facebook publish failed")

        return PublishOutcome.ok(post_id, f"https://www.facebook.com/{post_id}")


# ============================================================
# INSTAGRAM
# ============================================================

class InstagramPublisher(GraphApiPublisher):
    platform = "instagram"

    def publish(self, account: PublishAccount, content: PublishContent) -> PublishOutcome:
        if not self.is_configured(account):
            return PublishOutcome.failed("Instagram account not connected. Reconnect the account.")
        if not content.media_urls:
            return PublishOutcome.failed("Instagram posts require an image or video")

        container = {
            "image_url": content.media_urls[0],
            "access_token": account.access_token,
        }
        if content.post_type == "STORY":
            container["media_type"] = "STORIES"
        else:
            container["caption"] = content.caption

        try:
            creation = self._post(f"{account.platform_id}/media", container)
            published = self._post(f"{account.platform_id}/media_publish", {
                "creation_id": creation["id"],
                "access_token": account.access_token,
            })
            media_id = published["id"]
        except (requests.RequestException, PublishRequestError, KeyError) as e:
            publisher_logger.warning("Instagram publish failed", account_id=account.social_account_id, error_message=str(e))
            return PublishOutcome.failed(str(e) or "Instagram publish failed")

        return PublishOutcome.ok(media_id)


# ============================================================
# UNSUPPORTED
# ============================================================

class UnsupportedPublisher(BasePublisher):
    def __init__(self, platform: str):
        self.platform = platform

    def publish(self, account: PublishAccount, content: PublishContent) -> PublishOutcome:
        return PublishOutcome.failed(f"Publishing to {self.platform} is not supported yet")


# ============================================================
# REGISTRY
# ============================================================

class PublisherRegistry:
    """Maps platform names to publisher adapters"""

    def __init__(self, publishers: Optional[Dict[str, BasePublisher]] = None):
        if publishers is None:
            publishers = {
                "facebook": FacebookPublisher(),
                "instagram": InstagramPublisher(),
            }
        self.publishers = {name.lower(): p for name, p in publishers.items()}

    def get(self, platform: str) -> BasePublisher:
        platform = (platform or "").lower()
        return self.publishers.get(platform) or UnsupportedPublisher(platform)

    def register(self, platform: str, publisher: BasePublisher) -> None:
        self.publishers[platform.lower()] = publisher
