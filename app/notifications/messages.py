from __future__ import annotations

from app.tickets.models import ExternalTicket


def _ticket_summary(ticket: ExternalTicket) -> str:
    return (
        f"*Cliente:* {ticket.client.name}\n"
        f"*Contato:* {ticket.client.phone or 'N/A'}\n"
        f"*Endereço:* {ticket.client.address or 'N/A'}\n"
        f"*Solicitante:* {ticket.requester_name or 'N/A'}\n\n"
        f"*Descrição:* {ticket.description}\n\n"
        f"*Prioridade:* {ticket.type.value}"
    )


def assignment_message(ticket: ExternalTicket, *, assigned_by: str, brand: str) -> str:
    """Message for a technician who received a ticket from someone else."""

    return f"*Novo Chamado Atribuído no {brand}!*\n\n{_ticket_summary(ticket)}\n*Atribuído por:* {assigned_by}"


def take_message(ticket: ExternalTicket, *, brand: str) -> str:
    """Confirmation for a technician who took a ticket themselves."""

    return f"*Você Pegou um Chamado no {brand}!*\n\n{_ticket_summary(ticket)}"
