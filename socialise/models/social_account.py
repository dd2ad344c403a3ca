"""
SocialAccount model: a connected account that posts are published to.
"""
import uuid
from sqlalchemy import Column, String, DateTime, Text
from datetime import datetime, timezone
from ..database import Base


class SocialAccount(Base):
    __tablename__ = "social_accounts"

    id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    workspace_id = Column(String(64), nullable=False, index=True)
    platform = Column(String(50), nullable=False)  # instagram, facebook, tiktok, youtube, pinterest
    name = Column(String(200), nullable=False)
    platform_account_id = Column(String(255), nullable=True)  # page id / ig user id on the platform
    access_token = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
