"""Errors raised by the SLA engine.

Foreground callers never see these directly: ticket mutations go through
``services.sla_hooks`` which logs and swallows them. The HTTP layer maps the
client-facing ones to status codes in ``main.py``.
"""

from typing import Optional


class SlaError(Exception):
    """Base exception for all SLA engine errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidPolicy(SlaError):
    """A policy write violated the budget constraints."""


class PolicyNotFound(SlaError):
    """No policy exists and none could be synthesized from the priority."""


class InstanceNotFound(SlaError):
    """The ticket has no SLA instance."""

    def __init__(self, ticket_id, details: Optional[dict] = None):
        self.ticket_id = ticket_id
        super().__init__(f"No SLA instance for ticket {ticket_id}", details)


class TransientStoreError(SlaError):
    """The store failed; the operation is retried on the next scheduler tick."""


class NotificationDeliveryError(SlaError):
    """The notification collaborator rejected or failed to receive an event."""


class TicketNotFound(SlaError):
    """The ticket does not exist."""
