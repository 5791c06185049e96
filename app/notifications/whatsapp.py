"""Outbound WhatsApp messages through the Z-API ``send-text`` webhook."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError

from app.services.system_logs import WHATSAPP_SENT, SystemLogRepository

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


class Notifier(Protocol):
    async def send(self, to: str, body: str) -> bool:
        ...


class NotificationError(RuntimeError):
    """Raised when the webhook rejects a message."""


def format_phone(value: str) -> str:
    """Strip everything but digits, as expected by the webhook."""

    return _NON_DIGITS.sub("", value or "")


@dataclass(slots=True)
class ZapiCredentials:
    instance_id: str | None
    instance_token: str | None
    client_token: str | None
    base_url: str = "https://api.z-api.io"

    @property
    def configured(self) -> bool:
        return bool(self.instance_id and self.instance_token and self.client_token)

    @property
    def send_text_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/instances/{self.instance_id}/token/{self.instance_token}/send-text"


class WhatsAppNotifier:
    """Deliver text messages and record every attempt in the system log.

    Delivery failures are logged and reported through the return value; they
    never propagate to the caller, so a failed message cannot undo the ticket
    write that triggered it.
    """

    def __init__(
        self,
        credentials: ZapiCredentials,
        *,
        system_logs: SystemLogRepository | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._system_logs = system_logs
        self._timeout = timeout
        self._transport = transport
        if not credentials.configured:
            logger.warning("Z-API credentials are not fully set. WhatsApp sending will be disabled.")

    async def send(self, to: str, body: str) -> bool:
        if not self._credentials.configured:
            logger.info("Z-API service disabled. Would have sent to %s: %r", to, body)
            await self._log("failure", {"to": to, "body": body, "error": "Z-API client not configured."})
            return False

        phone = format_phone(to)
        try:
            message_id = await self._post(phone, body)
        except (httpx.HTTPError, NotificationError) as exc:
            logger.error("Failed to send WhatsApp message via Z-API: %s", exc)
            await self._log("failure", {"to": phone, "body": body, "error": str(exc)})
            return False

        logger.info("WhatsApp message sent to %s with Z-API id %s", phone, message_id)
        await self._log("success", {"to": phone, "body": body, "zapiId": message_id})
        return True

    async def _post(self, phone: str, body: str) -> str:
        headers = {"Content-Type": "application/json", "Client-Token": str(self._credentials.client_token)}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                self._credentials.send_text_url,
                headers=headers,
                json={"phone": phone, "message": body},
            )
        data = _json_body(response)
        message_id = data.get("zaapId") or data.get("id")
        if response.is_success and message_id:
            return str(message_id)
        raise NotificationError(_extract_error(data) or f"Unexpected Z-API response ({response.status_code})")

    async def _log(self, status: str, details: dict[str, Any]) -> None:
        if self._system_logs is None:
            return
        try:
            await self._system_logs.record(WHATSAPP_SENT, details={"status": status, **details})
        except SQLAlchemyError as exc:
            logger.warning("Could not record WhatsApp %s in system logs: %s", status, exc)


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _extract_error(data: dict[str, Any]) -> str | None:
    value = data.get("value")
    nested = value.get("message") if isinstance(value, dict) else None
    for candidate in (data.get("error"), nested, data.get("message")):
        if isinstance(candidate, str) and candidate:
            return candidate
    return None
