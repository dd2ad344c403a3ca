"""
Job payload carried by the post-publish queue.

Serialized in camelCase so the stored payload keeps the shape
``{postId, workspaceId, platformIds, scheduledAt?, isRetry?}`` plus the
``kind`` tag the worker dispatches on.
"""
import enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobKind(str, enum.Enum):
    PUBLISH = "publish"
    PUBLISH_NOW = "publish-now"
    RETRY = "retry"


class PostPublishJobData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    post_id: str = Field(alias="postId")
    workspace_id: str = Field(alias="workspaceId")
    platform_ids: List[str] = Field(alias="platformIds")
    scheduled_at: Optional[datetime] = Field(default=None, alias="scheduledAt")
    is_retry: Optional[bool] = Field(default=None, alias="isRetry")
    kind: JobKind = JobKind.PUBLISH

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_payload(cls, payload: dict) -> "PostPublishJobData":
        data = cls.model_validate(payload)
        # Payloads written without a tag are inferred from the retry flag
        if "kind" not in payload and data.is_retry:
            data = data.model_copy(update={"kind": JobKind.RETRY})
        return data
