"""
Post and PlatformLink models for scheduled social media content.
"""
import enum
import uuid
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ..database import Base


class PostStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    PUBLISHING = "PUBLISHING"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"


class PostType(str, enum.Enum):
    FEED = "FEED"
    STORY = "STORY"


def _new_id() -> str:
    return uuid.uuid4().hex


class Post(Base):
    __tablename__ = "posts"

    id = Column(String(32), primary_key=True, default=_new_id)
    workspace_id = Column(String(64), nullable=False, index=True)
    caption = Column(Text, nullable=False, default="")
    post_type = Column(String(20), nullable=False, default=PostType.FEED.value)
    media_urls = Column(JSON, default=list)
    status = Column(String(20), nullable=False, default=PostStatus.DRAFT.value, index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=True, index=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    platform_links = relationship(
        "PlatformLink",
        back_populates="post",
        cascade="all, delete-orphan",
        order_by="PlatformLink.position",
    )


class PlatformLink(Base):
    """One publish target (social account) of a post and its outcome."""
    __tablename__ = "post_platforms"
    __table_args__ = (UniqueConstraint("post_id", "social_account_id", name="uq_post_platform_account"),)

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(String(32), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    social_account_id = Column(String(32), ForeignKey("social_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=PostStatus.DRAFT.value)
    platform_post_id = Column(String(255), nullable=True)
    platform_post_url = Column(String(500), nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)  # kept for the retry UI
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    post = relationship("Post", back_populates="platform_links")
    social_account = relationship("SocialAccount")


class PublishError(Base):
    """Failed publish attempt for one target, shown next to the retry action."""
    __tablename__ = "publish_errors"

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(String(32), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    social_account_id = Column(String(32), nullable=False)
    platform = Column(String(50), nullable=False)
    error_code = Column(String(50), nullable=False, default="PUBLISH_FAILED")
    error_human = Column(Text, nullable=True)
    suggestion = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
