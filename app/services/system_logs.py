from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from app.tickets.models import SystemLog
from packages.db.models import SystemLogTable

logger = logging.getLogger(__name__)

EXTERNAL_TICKET_CREATED = "EXTERNAL_TICKET_CREATED"
WHATSAPP_SENT = "WHATSAPP_SENT"
TICKET_TRANSITION = "TICKET_TRANSITION"


class SystemLogRepository:
    """Append-only store for the ``system-logs`` collection."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        event: str,
        *,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> SystemLog:
        entry = SystemLog(
            id=str(uuid4()),
            event=event,
            user_id=user_id,
            details=dict(details or {}),
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    SystemLogTable(
                        id=entry.id,
                        user_id=entry.user_id,
                        event=entry.event,
                        details=entry.details,
                        timestamp=entry.timestamp,
                    )
                )
        logger.debug("Recorded system log %s (%s)", entry.event, entry.id)
        return entry

    async def list(self, *, event: str | None = None) -> list[SystemLog]:
        statement = select(SystemLogTable).order_by(SystemLogTable.timestamp.asc())
        if event is not None:
            statement = statement.where(SystemLogTable.event == event)
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [
                SystemLog(
                    id=str(row.id),
                    event=row.event,
                    user_id=row.user_id,
                    details=dict(row.details or {}),
                    timestamp=row.timestamp,
                )
                for row in result.scalars().all()
            ]
