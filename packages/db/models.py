"""SQLModel table definitions for the Nexus Service document collections."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class ExternalTicketTable(SQLModel, table=True):
    """Documents of the ``external-tickets`` collection."""

    __tablename__ = "external_tickets"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    client: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    sector_id: str = Field(sa_column=Column(String(100), nullable=False, index=True))
    creator_id: str = Field(sa_column=Column(String(100), nullable=False))
    technician_id: str | None = Field(default=None, sa_column=Column(String(100), nullable=True, index=True))
    description: str = Field(sa_column=Column(Text, nullable=False))
    type: str = Field(sa_column=Column(String(20), nullable=False))
    status: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    requester_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    scheduled_to: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    sla_expires_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    en_route: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    en_route_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    check_in: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    check_out: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    technical_report: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    comments: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class InternalTicketTable(SQLModel, table=True):
    """Documents of the ``internal-tickets`` collection."""

    __tablename__ = "internal_tickets"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    creator_id: str = Field(sa_column=Column(String(100), nullable=False))
    assignee_id: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    sector_id: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    status: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    is_priority: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    scheduled_to: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    comments: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class UserTable(SQLModel, table=True):
    """Application users with their role and sector scope."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    email: str | None = Field(default=None, sa_column=Column(String(255), nullable=True, unique=True))
    phone: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    role: str = Field(sa_column=Column(String(20), nullable=False))
    sector_ids: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    status: str = Field(default="active", sa_column=Column(String(30), nullable=False, default="active"))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ClientTable(SQLModel, table=True):
    """Customers with their SLA and preventive maintenance commitments."""

    __tablename__ = "clients"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    phone: str = Field(default="", sa_column=Column(String(50), nullable=False, default=""))
    status: str = Field(default="active", sa_column=Column(String(20), nullable=False, default="active"))
    address: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    sla_hours: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    preventive_contract: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))


class SystemLogTable(SQLModel, table=True):
    """Operational events such as ticket creation or outbound messages."""

    __tablename__ = "system_logs"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    user_id: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    event: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    details: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    timestamp: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
