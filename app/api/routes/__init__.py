"""Route modules exposed by the API package."""

from . import external_tickets, internal_tickets, maintenance, ping

__all__ = ["external_tickets", "internal_tickets", "maintenance", "ping"]
