from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from app.tickets.models import Actor, Client, ClientAddress, PreventiveContract, Role
from packages.db.models import ClientTable, UserTable


class UserRepository:
    """Read access to the ``users`` collection."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str) -> Actor | None:
        async with self._session_factory() as session:
            row = await session.get(UserTable, user_id)
            if row is None or row.status != "active":
                return None
            return self._table_to_actor(row)

    async def add(self, actor: Actor) -> Actor:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    UserTable(
                        id=actor.id,
                        name=actor.name,
                        email=actor.email,
                        phone=actor.phone,
                        role=actor.role.value,
                        sector_ids=list(actor.sector_ids),
                    )
                )
        return actor

    @staticmethod
    def _table_to_actor(row: UserTable) -> Actor:
        return Actor(
            id=str(row.id),
            name=row.name,
            role=Role(row.role),
            sector_ids=tuple(row.sector_ids or ()),
            phone=row.phone,
            email=row.email,
        )


class ClientRepository:
    """Read access to the ``clients`` collection."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, client_id: str) -> Client | None:
        async with self._session_factory() as session:
            row = await session.get(ClientTable, client_id)
            if row is None:
                return None
            return self._table_to_client(row)

    async def list_with_preventive_contract(self) -> list[Client]:
        statement = select(ClientTable).where(
            ClientTable.status == "active",
            ClientTable.preventive_contract.is_not(None),
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            clients = [self._table_to_client(row) for row in result.scalars().all()]
        return [client for client in clients if client.preventive_contract is not None]

    async def add(self, client: Client) -> Client:
        address = client.address
        contract = client.preventive_contract
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    ClientTable(
                        id=client.id,
                        name=client.name,
                        phone=client.phone,
                        status=client.status,
                        address=None
                        if address is None
                        else {
                            "street": address.street,
                            "number": address.number,
                            "complement": address.complement,
                            "neighborhood": address.neighborhood,
                            "city": address.city,
                            "state": address.state,
                        },
                        sla_hours=client.sla_hours,
                        preventive_contract=None
                        if contract is None
                        else {"sectorIds": list(contract.sector_ids), "frequencyDays": contract.frequency_days},
                    )
                )
        return client

    @staticmethod
    def _table_to_client(row: ClientTable) -> Client:
        address: dict[str, Any] | None = row.address
        contract: dict[str, Any] | None = row.preventive_contract
        return Client(
            id=str(row.id),
            name=row.name,
            phone=row.phone or "",
            status=row.status,
            address=None
            if not address
            else ClientAddress(
                street=str(address.get("street", "")),
                number=address.get("number"),
                complement=address.get("complement"),
                neighborhood=str(address.get("neighborhood", "")),
                city=str(address.get("city", "")),
                state=str(address.get("state", "")),
            ),
            sla_hours=row.sla_hours,
            preventive_contract=None
            if not contract
            else PreventiveContract(
                sector_ids=tuple(contract.get("sectorIds") or ()),
                frequency_days=int(contract.get("frequencyDays") or 0),
            ),
        )
