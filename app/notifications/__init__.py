"""Outbound notifications for ticket assignments."""

from .messages import assignment_message, take_message
from .whatsapp import NotificationError, Notifier, WhatsAppNotifier, ZapiCredentials, format_phone

__all__ = [
    "NotificationError",
    "Notifier",
    "WhatsAppNotifier",
    "ZapiCredentials",
    "assignment_message",
    "format_phone",
    "take_message",
]
