"""Webhook dispatcher - at-least-once delivery of tenant notifications."""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

import httpx

from callsync.config import settings
from callsync.schemas.tenants import NotificationEvent, TenantAccount, TenantState

logger = logging.getLogger(__name__)

MAX_BACKOFF_EXPONENT = 32


def build_envelope(tenant: TenantAccount, event: NotificationEvent) -> dict[str, Any]:
    """JSON body POSTed to the tenant webhook. Consumers dedupe on `id`."""
    return {
        "event": "notification",
        "notification_type": event.kind.value,
        "tenant_id": tenant.tenant_id,
        "id": event.id,
        "timestamp": event.created_at.isoformat(),
        "title": event.title,
        "message": event.message,
        "read": event.read,
    }


class WebhookDispatcher:
    """Posts notifications to tenant webhooks with capped exponential backoff between retries."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        backoff_base: float | None = None,
        backoff_max: float | None = None,
    ):
        self._client = http_client or httpx.AsyncClient(timeout=settings.webhook_timeout_seconds)
        self.backoff_base = settings.webhook_backoff_base_seconds if backoff_base is None else backoff_base
        self.backoff_max = settings.webhook_backoff_max_seconds if backoff_max is None else backoff_max

    async def aclose(self) -> None:
        await self._client.aclose()

    def backoff(self, attempts: int) -> timedelta:
        """Delay before the next retry after `attempts` failed attempts."""
        # Float bases overflow on large exponents
        exponent = min(max(attempts - 1, 0), MAX_BACKOFF_EXPONENT)
        seconds = self.backoff_base * 2**exponent
        return timedelta(seconds=min(seconds, self.backoff_max))

    def is_due(self, event: NotificationEvent, now: datetime) -> bool:
        if event.delivered:
            return False
        return event.next_attempt_at is None or event.next_attempt_at <= now

    async def dispatch(self, tenant: TenantAccount, event: NotificationEvent, now: datetime) -> bool:
        """POST one event. Marks it delivered on 2xx; never raises."""
        if event.delivered:
            return True
        if not tenant.webhook_url:
            return False

        event.delivery_attempts += 1
        try:
            response = await self._client.post(
                tenant.webhook_url,
                json=build_envelope(tenant, event),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Webhook delivery of %s for tenant %s failed: %s",
                event.id,
                tenant.tenant_id,
                exc.__class__.__name__,
            )
        else:
            if response.is_success:
                event.delivered = True
                event.next_attempt_at = None
                logger.info("Webhook delivered %s for tenant %s", event.id, tenant.tenant_id)
                return True
            logger.warning(
                "Webhook for tenant %s responded with HTTP %d",
                tenant.tenant_id,
                response.status_code,
            )

        event.next_attempt_at = now + self.backoff(event.delivery_attempts)
        return False

    async def retry_pending(self, states: Iterable[TenantState], now: datetime) -> int:
        """Retry every undelivered, due event of tenants with a webhook. Returns deliveries."""
        delivered = 0
        for state in states:
            if not state.tenant.webhook_url:
                continue
            for event in state.notifications:
                if self.is_due(event, now) and await self.dispatch(state.tenant, event, now):
                    delivered += 1
        return delivered
