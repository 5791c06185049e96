from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from packages.db.models import ExternalTicketTable, InternalTicketTable

from .models import Comment, ExternalTicket, InternalTicket, Stamp, TechnicalReport, TicketClient
from .state import TicketStatus, TicketType


class _SessionRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)


class ExternalTicketRepository(_SessionRepository):
    """Persistence for the ``external-tickets`` collection."""

    async def create(self, ticket: ExternalTicket) -> ExternalTicket:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(self._ticket_to_table(ticket))
        return ticket

    async def get(self, ticket_id: str) -> ExternalTicket | None:
        async with self._session_factory() as session:
            row = await session.get(ExternalTicketTable, ticket_id)
            if row is None:
                return None
            return self._table_to_ticket(row)

    async def list(self, *, status: TicketStatus | None = None) -> list[ExternalTicket]:
        statement = select(ExternalTicketTable)
        if status is not None:
            statement = statement.where(ExternalTicketTable.status == status.value)
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_ticket(row) for row in result.scalars().all()]

    async def update(self, ticket: ExternalTicket) -> ExternalTicket | None:
        """Overwrite the stored document with ``ticket`` (last write wins)."""

        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(ExternalTicketTable, ticket.id)
                if row is None:
                    return None
                self._apply(row, ticket)
        return ticket

    async def append_comment(self, ticket_id: str, comment: Comment) -> ExternalTicket | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(ExternalTicketTable, ticket_id)
                if row is None:
                    return None
                row.comments = [*row.comments, _comment_to_json(comment)]
                return self._table_to_ticket(row)

    async def set_en_route(self, *, technician_id: str, ticket_id: str, at: datetime) -> list[ExternalTicket]:
        """Flag ``ticket_id`` as the technician's next stop.

        The flag is cleared on every other ticket the technician holds within
        the same transaction, so either all rows change or none do. Returns the
        tickets that were modified, target last.
        """

        changed: list[ExternalTicketTable] = []
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(ExternalTicketTable).where(
                        ExternalTicketTable.technician_id == technician_id,
                        ExternalTicketTable.en_route == True,  # noqa: E712
                        ExternalTicketTable.id != ticket_id,
                    )
                )
                for row in result.scalars().all():
                    row.en_route = False
                    row.en_route_at = None
                    changed.append(row)

                target = await session.get(ExternalTicketTable, ticket_id)
                if target is None or target.technician_id != technician_id:
                    raise LookupError(f"Ticket {ticket_id} is not assigned to technician {technician_id}")
                target.en_route = True
                target.en_route_at = at
                changed.append(target)
                return [self._table_to_ticket(row) for row in changed]

    async def find_last_preventive(self, *, client_id: str, sector_id: str) -> ExternalTicket | None:
        """Latest contract or standard ticket for a client in one sector."""

        statement = (
            select(ExternalTicketTable)
            .where(
                ExternalTicketTable.sector_id == sector_id,
                ExternalTicketTable.type.in_([TicketType.CONTRACT.value, TicketType.STANDARD.value]),
                ExternalTicketTable.client["id"].as_string() == client_id,
            )
            .order_by(ExternalTicketTable.created_at.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            row = result.scalars().first()
        return self._table_to_ticket(row) if row is not None else None

    @staticmethod
    def _apply(row: ExternalTicketTable, ticket: ExternalTicket) -> None:
        source = ExternalTicketRepository._ticket_to_table(ticket)
        for name in (
            "client",
            "sector_id",
            "creator_id",
            "technician_id",
            "description",
            "type",
            "status",
            "requester_name",
            "scheduled_to",
            "sla_expires_at",
            "en_route",
            "en_route_at",
            "check_in",
            "check_out",
            "technical_report",
            "comments",
            "created_at",
            "updated_at",
        ):
            setattr(row, name, getattr(source, name))

    @staticmethod
    def _ticket_to_table(ticket: ExternalTicket) -> ExternalTicketTable:
        client = ticket.client
        report = ticket.technical_report
        return ExternalTicketTable(
            id=ticket.id,
            client={
                "id": client.id,
                "name": client.name,
                "phone": client.phone,
                "isWhats": client.is_whats,
                "address": client.address,
            },
            sector_id=ticket.sector_id,
            creator_id=ticket.creator_id,
            technician_id=ticket.technician_id,
            description=ticket.description,
            type=ticket.type.value,
            status=ticket.status.value,
            requester_name=ticket.requester_name,
            scheduled_to=ticket.scheduled_to,
            sla_expires_at=ticket.sla_expires_at,
            en_route=ticket.en_route,
            en_route_at=ticket.en_route_at,
            check_in=_stamp_to_json(ticket.check_in),
            check_out=_stamp_to_json(ticket.check_out),
            technical_report=None
            if report is None
            else {"observations": report.observations, "photos": list(report.photos), "signature": report.signature},
            comments=[_comment_to_json(comment) for comment in ticket.comments],
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )

    @staticmethod
    def _table_to_ticket(row: ExternalTicketTable) -> ExternalTicket:
        client = row.client or {}
        report = row.technical_report
        return ExternalTicket(
            id=str(row.id),
            client=TicketClient(
                id=str(client.get("id") or ""),
                name=str(client.get("name") or ""),
                phone=str(client.get("phone") or ""),
                is_whats=bool(client.get("isWhats", False)),
                address=client.get("address"),
            ),
            sector_id=row.sector_id,
            creator_id=row.creator_id,
            technician_id=row.technician_id,
            description=row.description,
            type=TicketType(row.type),
            status=TicketStatus(row.status),
            requester_name=row.requester_name,
            scheduled_to=_as_utc(row.scheduled_to),
            sla_expires_at=_as_utc(row.sla_expires_at),
            en_route=bool(row.en_route),
            en_route_at=_as_utc(row.en_route_at),
            check_in=_stamp_from_json(row.check_in),
            check_out=_stamp_from_json(row.check_out),
            technical_report=None
            if report is None
            else TechnicalReport(
                observations=str(report.get("observations", "")),
                photos=tuple(report.get("photos") or ()),
                signature=report.get("signature"),
            ),
            comments=tuple(_comment_from_json(item) for item in row.comments or ()),
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )


class InternalTicketRepository(_SessionRepository):
    """Persistence for the ``internal-tickets`` collection."""

    async def create(self, ticket: InternalTicket) -> InternalTicket:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(self._ticket_to_table(ticket))
        return ticket

    async def get(self, ticket_id: str) -> InternalTicket | None:
        async with self._session_factory() as session:
            row = await session.get(InternalTicketTable, ticket_id)
            if row is None:
                return None
            return self._table_to_ticket(row)

    async def list(self) -> list[InternalTicket]:
        async with self._session_factory() as session:
            result = await session.execute(select(InternalTicketTable))
            return [self._table_to_ticket(row) for row in result.scalars().all()]

    async def update(self, ticket: InternalTicket) -> InternalTicket | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(InternalTicketTable, ticket.id)
                if row is None:
                    return None
                row.title = ticket.title
                row.description = ticket.description
                row.assignee_id = ticket.assignee_id
                row.sector_id = ticket.sector_id
                row.status = ticket.status.value
                row.is_priority = ticket.is_priority
                row.scheduled_to = ticket.scheduled_to
                row.comments = [_comment_to_json(comment) for comment in ticket.comments]
                row.updated_at = ticket.updated_at
        return ticket

    async def append_comment(self, ticket_id: str, comment: Comment) -> InternalTicket | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(InternalTicketTable, ticket_id)
                if row is None:
                    return None
                row.comments = [*row.comments, _comment_to_json(comment)]
                return self._table_to_ticket(row)

    @staticmethod
    def _ticket_to_table(ticket: InternalTicket) -> InternalTicketTable:
        return InternalTicketTable(
            id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            creator_id=ticket.creator_id,
            assignee_id=ticket.assignee_id,
            sector_id=ticket.sector_id,
            status=ticket.status.value,
            is_priority=ticket.is_priority,
            scheduled_to=ticket.scheduled_to,
            comments=[_comment_to_json(comment) for comment in ticket.comments],
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )

    @staticmethod
    def _table_to_ticket(row: InternalTicketTable) -> InternalTicket:
        return InternalTicket(
            id=str(row.id),
            title=row.title,
            description=row.description or "",
            creator_id=row.creator_id,
            assignee_id=row.assignee_id,
            sector_id=row.sector_id,
            status=TicketStatus(row.status),
            is_priority=bool(row.is_priority),
            scheduled_to=_as_utc(row.scheduled_to),
            comments=tuple(_comment_from_json(item) for item in row.comments or ()),
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )


def _as_utc(value: Any) -> Any:
    # SQLite hands back naive datetimes even for timezone aware columns.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    return _as_utc(datetime.fromisoformat(str(value)))


def _stamp_to_json(stamp: Stamp | None) -> dict[str, str] | None:
    if stamp is None:
        return None
    return {"ticketId": stamp.ticket_id, "timestamp": stamp.timestamp.isoformat()}


def _stamp_from_json(data: dict[str, Any] | None) -> Stamp | None:
    if not data:
        return None
    return Stamp(ticket_id=str(data["ticketId"]), timestamp=_parse_timestamp(data["timestamp"]))


def _comment_to_json(comment: Comment) -> dict[str, str]:
    return {
        "id": comment.id,
        "authorId": comment.author_id,
        "content": comment.content,
        "createdAt": comment.created_at.isoformat(),
    }


def _comment_from_json(data: dict[str, Any]) -> Comment:
    return Comment(
        id=str(data["id"]),
        author_id=str(data["authorId"]),
        content=str(data["content"]),
        created_at=_parse_timestamp(data["createdAt"]),
    )
