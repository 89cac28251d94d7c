from __future__ import annotations

import httpx

from uptime_alarms.alerting.base import metadata_items, post_json
from uptime_alarms.models import NotificationChannelName, NotificationPayload

URGENT_COLOR = 0xE74C3C
NORMAL_COLOR = 0x2ECC71
MAX_EMBED_FIELDS = 25


class DiscordChannel:
    name: NotificationChannelName = "discord"

    def __init__(self, webhook_url: str, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.webhook_url = webhook_url
        self._transport = transport

    def build_body(self, payload: NotificationPayload) -> dict[str, object]:
        fields = [
            {"name": label, "value": value[:1024], "inline": True}
            for label, value in metadata_items(payload)[:MAX_EMBED_FIELDS]
        ]
        embed: dict[str, object] = {
            "title": payload.title[:256],
            "description": payload.message,
            "color": URGENT_COLOR if payload.priority == "urgent" else NORMAL_COLOR,
            "fields": fields,
        }
        return {"embeds": [embed]}

    async def send(self, payload: NotificationPayload) -> None:
        await post_json(self.name, self.webhook_url, self.build_body(payload), transport=self._transport)
