# store.py
# =============================================================================
# Local record store — string keys mapped to JSON documents in one SQLite table.
# One database file is one studio profile. Last write wins, no merge.
# =============================================================================

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, List

from pydantic import TypeAdapter, ValidationError
from pydantic_core import to_jsonable_python
from sqlalchemy import String, Text, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

log = logging.getLogger("formpick.store")

# -----------------------------------------------------------------------------
# Collections (versioned keys)
# -----------------------------------------------------------------------------
MEMBERS_V1 = "formpick_members_v1"
MEMBERS_V2 = "formpick_members_v2"
EVENTS = "formpick_schedule_events_v1"
CHANGES = "formpick_admin_changes_v1"
NOTIFICATIONS = "formpick_admin_notifications_v1"
MACHINES = "formpick_center_machines_v1"
LOG_PREFIX = "formpick_workoutlog_v1::"
LOG_INDEX = "formpick_admin_log_index_v1"
ANSWERS = "formpick_answers_v1"
FEEDBACK_DRAFT = "formpick_feedback_draft_v1"
FEEDBACK_REQUEST = "formpick_feedback_request_v1"
COACH_FEEDBACK = "formpick_coach_feedback_v1"


def log_key(member_id: str, date: str) -> str:
    """Composite key of the workout log for one member on one day."""
    return f"{LOG_PREFIX}{member_id}::{date}"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# -----------------------------------------------------------------------------
# SQLAlchemy model
# -----------------------------------------------------------------------------
class Base(DeclarativeBase):
    pass


class Record(Base):
    __tablename__ = "record"
    __table_args__ = {"extend_existing": True}

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)


_MISSING = object()


class RecordStore:
    """Keyed JSON documents. Built once per process, handed to each module."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def read(self, key: str, fallback: Any = None) -> Any:
        """Return the parsed document under ``key``.

        An absent key, an empty value or text that is not valid JSON all
        yield ``fallback``; nothing is raised for bad content.
        """
        async with self._sessions() as s:
            row = await s.get(Record, key)
            raw = row.value if row is not None else None
        if not raw:
            return fallback
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            log.warning(f"Malformed document under {key!r}: {e}")
            return fallback

    async def read_as(self, key: str, tp: Any, fallback: Any = None) -> Any:
        """Like ``read`` but validated into ``tp``; a shape mismatch is a fallback too."""
        raw = await self.read(key, _MISSING)
        if raw is _MISSING:
            return fallback
        try:
            return TypeAdapter(tp).validate_python(raw)
        except ValidationError as e:
            log.warning(f"Document under {key!r} does not match {tp!r}: {e.error_count()} errors")
            return fallback

    async def read_list(self, key: str, model: Any) -> List[Any]:
        """Collection under ``key`` validated item by item.

        Items that do not fit ``model`` are dropped with a warning; their
        valid siblings are kept. A document that is not a list reads as ``[]``.
        """
        raw = await self.read(key, [])
        if not isinstance(raw, list):
            log.warning(f"Document under {key!r} is not a list; reading as empty")
            return []
        adapter = TypeAdapter(model)
        items: List[Any] = []
        for idx, item in enumerate(raw):
            try:
                items.append(adapter.validate_python(item))
            except ValidationError as e:
                log.warning(f"Dropping item {idx} under {key!r}: {e.error_count()} errors")
        return items

    async def write(self, key: str, value: Any) -> None:
        payload = json.dumps(to_jsonable_python(value), ensure_ascii=False)
        async with self._sessions() as s:
            await s.merge(Record(key=key, value=payload, updated_at=now_iso()))
            await s.commit()

    async def remove(self, key: str) -> None:
        async with self._sessions() as s:
            await s.execute(delete(Record).where(Record.key == key))
            await s.commit()

