from __future__ import annotations

import httpx

from uptime_alarms.alerting.base import metadata_items, post_json
from uptime_alarms.models import NotificationChannelName, NotificationPayload


class SlackChannel:
    name: NotificationChannelName = "slack"

    def __init__(self, webhook_url: str, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.webhook_url = webhook_url
        self._transport = transport

    def build_body(self, payload: NotificationPayload) -> dict[str, object]:
        details = "\n".join(f"*{label}:* {value}" for label, value in metadata_items(payload))
        text = "\n\n".join(part for part in (payload.message, details) if part)
        blocks: list[dict[str, object]] = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": payload.title,
                    "emoji": True,
                },
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": text,
                },
            },
        ]
        if payload.priority == "urgent":
            context_block: dict[str, object] = {
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": "`urgent`"}],
            }
            blocks.append(context_block)
        return {"text": f"{payload.title}\n{payload.message}", "blocks": blocks}

    async def send(self, payload: NotificationPayload) -> None:
        await post_json(self.name, self.webhook_url, self.build_body(payload), transport=self._transport)
