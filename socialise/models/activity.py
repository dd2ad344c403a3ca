"""
Activity model for the workspace audit log.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text
from datetime import datetime, timezone
from ..database import Base


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(String(64), nullable=False, index=True)
    action = Column(String(50), nullable=False, index=True)  # published, publish_partial, publish_failed
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(String(64), nullable=False)
    resource_name = Column(String(200), nullable=True)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
