"""Database models and utilities."""

from .models import (
    ClientTable,
    ExternalTicketTable,
    InternalTicketTable,
    SystemLogTable,
    UserTable,
)

__all__ = [
    "ClientTable",
    "ExternalTicketTable",
    "InternalTicketTable",
    "SystemLogTable",
    "UserTable",
]
