"""
Saved-session persistence.

WHAT: Save, list, load, rename and delete negotiation records; key/value UI settings
WHY: The session manager and the API share one persistence surface
HOW: SQLAlchemy sessions from an injectable context-manager factory (get_db by default);
     pydantic records in, pydantic records out
"""

from datetime import timezone
from typing import Any, Callable, ContextManager, Dict, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from .database import get_db
from .models import AppSetting, SavedSessionRecord
from ..models.api_schemas import BrowserConfig, LLMConfig, SavedSession, SavedSessionSummary
from ..models.negotiation import ConversationMessage, NegotiationConfig, Phase
from ..utils.exceptions import SavedSessionNotFoundException
from ..utils.logger import get_logger

logger = get_logger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]


def _aware(value):
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_saved_session(row: SavedSessionRecord) -> SavedSession:
    return SavedSession(
        id=row.id,
        name=row.name,
        url=row.url,
        config=NegotiationConfig.model_validate(row.config),
        llm_config=LLMConfig.model_validate(row.llm_config or {}),
        browser_config=BrowserConfig.model_validate(row.browser_config or {}),
        messages=[ConversationMessage.model_validate(m) for m in row.messages or []],
        summary=row.summary,
        final_phase=Phase(row.final_phase),
        started_at=_aware(row.started_at),
        ended_at=_aware(row.ended_at),
    )


def _to_summary(row: SavedSessionRecord) -> SavedSessionSummary:
    return SavedSessionSummary(
        id=row.id,
        name=row.name,
        url=row.url,
        service_provider=row.service_provider,
        message_count=len(row.messages or []),
        summary=row.summary,
        final_phase=Phase(row.final_phase),
        started_at=_aware(row.started_at),
        ended_at=_aware(row.ended_at),
    )


class SessionStore:
    """Persistence for saved negotiations and UI settings."""

    def __init__(self, session_factory: SessionFactory = get_db):
        self._session_factory = session_factory

    # ---------- Saved sessions ----------

    def save(self, record: SavedSession) -> None:
        """Insert or replace the record with `record.id`. API keys are never written."""
        with self._session_factory() as db:
            row = db.get(SavedSessionRecord, record.id)
            if row is None:
                row = SavedSessionRecord(id=record.id)
                db.add(row)
            row.name = record.name
            row.url = record.url
            row.service_provider = record.config.service_provider
            row.config = record.config.model_dump(mode="json")
            row.llm_config = record.llm_config.without_secrets().model_dump(mode="json")
            row.browser_config = record.browser_config.model_dump(mode="json")
            row.messages = [m.model_dump(mode="json") for m in record.messages]
            row.summary = record.summary
            row.final_phase = record.final_phase.value
            row.started_at = record.started_at
            row.ended_at = record.ended_at
        logger.debug(f"Saved session {record.id} ({len(record.messages)} messages, {record.final_phase.value})")

    def list_sessions(self) -> List[SavedSessionSummary]:
        """All saved sessions, newest first."""
        with self._session_factory() as db:
            rows = db.scalars(
                select(SavedSessionRecord).order_by(SavedSessionRecord.ended_at.desc())
            ).all()
            return [_to_summary(row) for row in rows]

    def load(self, saved_id: str) -> SavedSession:
        """
        Raises:
            SavedSessionNotFoundException: No record with this id
        """
        with self._session_factory() as db:
            row = db.get(SavedSessionRecord, saved_id)
            if row is None:
                raise SavedSessionNotFoundException(saved_id)
            return _to_saved_session(row)

    def rename(self, saved_id: str, name: str) -> SavedSession:
        with self._session_factory() as db:
            row = db.get(SavedSessionRecord, saved_id)
            if row is None:
                raise SavedSessionNotFoundException(saved_id)
            row.name = name
            config = dict(row.config)
            config["session_name"] = name
            row.config = config
            logger.info(f"Renamed saved session {saved_id} to {name!r}")
            return _to_saved_session(row)

    def rename_if_exists(self, saved_id: str, name: str) -> bool:
        """Mirror a live rename; the session may not have been auto-saved yet."""
        try:
            self.rename(saved_id, name)
        except SavedSessionNotFoundException:
            return False
        return True

    def remove(self, saved_id: str) -> bool:
        with self._session_factory() as db:
            row = db.get(SavedSessionRecord, saved_id)
            if row is None:
                return False
            db.delete(row)
        logger.info(f"Deleted saved session {saved_id}")
        return True

    # ---------- Settings ----------

    def get_settings(self) -> Dict[str, Any]:
        with self._session_factory() as db:
            return {row.key: row.value for row in db.scalars(select(AppSetting)).all()}

    def set_setting(self, key: str, value: Any) -> None:
        with self._session_factory() as db:
            row = db.get(AppSetting, key)
            if row is None:
                db.add(AppSetting(key=key, value=value))
            else:
                row.value = value
        logger.debug(f"Setting {key} updated")
