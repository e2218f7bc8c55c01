"""
ORM models for saved negotiations.

WHAT: SQLAlchemy models for the saved_sessions and app_settings tables
WHY: Persist finished and in-progress negotiations and the UI's key/value settings
HOW: Declarative models; nested documents (config, messages) stored as JSON columns
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime, JSON, Index

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SavedSessionRecord(Base):
    """
    Saved negotiation.

    WHAT: One negotiation's configuration, conversation log and outcome
    WHY: Lets the human review, rename, delete and continue past negotiations
    HOW: Primary key is the live session id, so auto-save upserts the same row
    """
    __tablename__ = "saved_sessions"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False)
    url = Column(String(2000), nullable=False)
    service_provider = Column(String(200), nullable=False)
    config = Column(JSON, nullable=False)
    llm_config = Column(JSON, nullable=False, default=dict)
    browser_config = Column(JSON, nullable=False, default=dict)
    messages = Column(JSON, nullable=False, default=list)
    summary = Column(Text, nullable=True)
    final_phase = Column(String(30), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_saved_sessions_ended_at", "ended_at"),
    )

    def __repr__(self):
        return f"<SavedSessionRecord(id={self.id}, name={self.name}, phase={self.final_phase})>"


class AppSetting(Base):
    """UI setting stored as a JSON value under a string key."""
    __tablename__ = "app_settings"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<AppSetting(key={self.key})>"
