import logging
from typing import Protocol

import httpx

from sla_engine.config import settings
from sla_engine.exceptions import NotificationDeliveryError
from sla_engine.schemas.notification import EscalationEvent

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, event: EscalationEvent) -> None: ...


class LoggingNotifier:
    """Writes escalation events to the log. Used when no webhook is configured."""

    async def notify(self, event: EscalationEvent) -> None:
        logger.warning(
            "SLA escalation: ticket %s %s %s (level %d, assignee %s, due %s)",
            event.ticket_id,
            event.breach_type.value,
            event.severity.value,
            event.escalation_level,
            event.assignee_id,
            event.due_at.isoformat(),
        )

    async def close(self) -> None:
        pass


class WebhookNotifier:
    """POSTs escalation events as JSON to the notification service."""

    def __init__(self, url: str, timeout: float | None = None, client: httpx.AsyncClient | None = None):
        self.url = url
        self._timeout = timeout or settings.notification_timeout_seconds
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def notify(self, event: EscalationEvent) -> None:
        try:
            response = await self._get_client().post(self.url, json=event.model_dump(mode="json"))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationDeliveryError(
                f"Escalation delivery failed for ticket {event.ticket_id}",
                details={"url": self.url, "error": str(exc)},
            ) from exc
        logger.info(
            "Escalation notification sent for ticket %s (%s, level %d)",
            event.ticket_id,
            event.severity.value,
            event.escalation_level,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_notifier() -> LoggingNotifier | WebhookNotifier:
    if settings.notification_webhook_url:
        return WebhookNotifier(settings.notification_webhook_url)
    return LoggingNotifier()
