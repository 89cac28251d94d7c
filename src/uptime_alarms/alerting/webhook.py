from __future__ import annotations

import httpx

from uptime_alarms.alerting.base import post_json
from uptime_alarms.models import NotificationChannelName, NotificationPayload


class WebhookChannel:
    """Posts the generic notification payload as JSON, plus any configured headers."""

    name: NotificationChannelName = "webhook"

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.headers = dict(headers or {})
        self._transport = transport

    async def send(self, payload: NotificationPayload) -> None:
        await post_json(
            self.name,
            self.url,
            payload.model_dump(mode="json"),
            headers=self.headers,
            transport=self._transport,
        )
