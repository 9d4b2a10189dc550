from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.sql import func

from orb.memory import models
from orb.orchestrator.events import ConversationMessage, PersonalityFact
from orb.telemetry.logging import get_logger


def _default_session_title(now: datetime | None = None) -> str:
    stamp = now or datetime.now(timezone.utc)
    return f"{stamp.strftime('%b')} {stamp.day} Session"


def _to_epoch(value: datetime | None) -> float:
    if value is None:
        return datetime.now(timezone.utc).timestamp()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


class ConversationStore:
    """SQLAlchemy-backed store for sessions, messages, facts and preferences."""

    def __init__(self, url: str, max_pool_size: int = 5) -> None:
        engine_kwargs: dict[str, Any] = {"echo": False}
        if not make_url(url).get_backend_name().startswith("sqlite"):
            engine_kwargs["pool_size"] = max_pool_size
        self._engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self._session_factory = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)
        self._logger = get_logger(__name__)

    async def init(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(models.Base.metadata.create_all)
        self._logger.info("store.ready", url=self._engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        await self._engine.dispose()

    # Sessions

    async def create_session(self, title: str | None = None) -> dict[str, str]:
        session_id = str(uuid4())
        display_title = title or _default_session_title()
        async with self._session_factory() as session:
            session.add(models.Session(id=session_id, title=display_title))
            await session.commit()
        return {"id": session_id, "title": display_title}

    async def get_session(self, session_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            row = await session.get(models.Session, session_id)
            if row is None:
                return None
            return self._session_dict(row)

    async def get_sessions(self, limit: int = 20) -> list[dict[str, Any]]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(models.Session).order_by(models.Session.last_active.desc()).limit(limit)
                )
            ).scalars()
            return [self._session_dict(row) for row in rows]

    async def rename_session(self, session_id: str, title: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(models.Session)
                .where(models.Session.id == session_id)
                .values(title=title, last_active=func.now())
            )
            await session.commit()

    # Conversations

    async def save_message(self, session_id: str, message: ConversationMessage) -> int:
        async with self._session_factory() as session:
            if await session.get(models.Session, session_id) is None:
                session.add(models.Session(id=session_id, title=_default_session_title()))
            row = models.Conversation(
                session_id=session_id,
                role=message.role,
                content=message.content,
                timestamp=datetime.fromtimestamp(message.timestamp, tz=timezone.utc),
                message_metadata=dict(message.metadata),
            )
            session.add(row)
            await session.execute(
                update(models.Session).where(models.Session.id == session_id).values(last_active=func.now())
            )
            await session.commit()
            self._logger.debug("store.message.saved", session_id=session_id, role=message.role, id=row.id)
            return row.id

    async def get_conversations(self, session_id: str, limit: int = 50) -> list[ConversationMessage]:
        return await self._latest(session_id, limit)

    async def get_recent_context(self, session_id: str, limit: int = 8) -> list[ConversationMessage]:
        return await self._latest(session_id, limit)

    async def _latest(self, session_id: str, limit: int) -> list[ConversationMessage]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(models.Conversation)
                    .where(models.Conversation.session_id == session_id)
                    .order_by(models.Conversation.id.desc())
                    .limit(limit)
                )
            ).scalars()
            messages = [
                ConversationMessage(
                    role=row.role,  # type: ignore[arg-type]
                    content=row.content,
                    metadata=row.message_metadata or {},
                    timestamp=_to_epoch(row.timestamp),
                )
                for row in rows
            ]
        messages.reverse()
        return messages

    # Personality

    async def get_personality(self) -> list[PersonalityFact]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(select(models.Personality).order_by(models.Personality.confidence.desc()))
            ).scalars()
            return [
                PersonalityFact(
                    key=row.key,
                    value=row.value,
                    confidence=row.confidence,
                    last_updated=row.last_updated or datetime.now(timezone.utc),
                )
                for row in rows
            ]

    async def update_personality(self, key: str, value: Any, confidence: float = 1.0) -> None:
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {confidence}")
        async with self._session_factory() as session:
            existing = (
                await session.execute(select(models.Personality).where(models.Personality.key == key))
            ).scalar_one_or_none()
            if existing is None:
                session.add(models.Personality(key=key, value=value, confidence=confidence))
            else:
                existing.value = value
                existing.confidence = confidence
                existing.last_updated = datetime.now(timezone.utc)
            await session.commit()
        self._logger.info("store.personality.updated", key=key, confidence=confidence)

    async def delete_personality(self, key: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(delete(models.Personality).where(models.Personality.key == key))
            await session.commit()
        return bool(result.rowcount)

    # Preferences

    async def get_preference(self, key: str) -> Any:
        async with self._session_factory() as session:
            row = await session.get(models.Preference, key)
            return None if row is None else row.value

    async def set_preference(self, key: str, value: Any, category: str) -> None:
        async with self._session_factory() as session:
            row = await session.get(models.Preference, key)
            if row is None:
                session.add(models.Preference(key=key, value=value, category=category))
            else:
                row.value = value
                row.last_updated = datetime.now(timezone.utc)
            await session.commit()

    @staticmethod
    def _session_dict(row: models.Session) -> dict[str, Any]:
        return {
            "id": row.id,
            "title": row.title,
            "summary": row.summary,
            "last_active": row.last_active.isoformat() if row.last_active else None,
        }


__all__ = ["ConversationStore"]
