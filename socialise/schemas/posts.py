from pydantic import BaseModel, field_validator
from typing import Optional, List
from datetime import datetime

from ..clock import get_zone


class AccountCreate(BaseModel):
    platform: str
    name: str
    platform_account_id: Optional[str] = None
    access_token: Optional[str] = None


class PostCreate(BaseModel):
    caption: str = ""
    social_account_ids: List[str]
    post_type: str = "FEED"
    media_urls: List[str] = []


class ScheduleRequest(BaseModel):
    """When to publish; a naive datetime is read in ``timezone``."""
    datetime: datetime
    timezone: str = "UTC"
    platforms: List[str] = []

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, value: str) -> str:
        get_zone(value)
        return value


class RescheduleRequest(BaseModel):
    datetime: datetime
