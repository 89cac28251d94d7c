from __future__ import annotations

import re
from typing import Any, Protocol

import httpx

from uptime_alarms.models import NotificationChannelName, NotificationPayload


class DeliveryError(Exception):
    pass


class NotificationChannel(Protocol):
    name: NotificationChannelName

    async def send(self, payload: NotificationPayload) -> None: ...


def humanize_key(key: str) -> str:
    spaced = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", key).replace("_", " ")
    return spaced[:1].upper() + spaced[1:]


def metadata_items(payload: NotificationPayload) -> list[tuple[str, str]]:
    items: list[tuple[str, str]] = []
    for key, value in payload.metadata.items():
        if value is None or value == "":
            continue
        items.append((humanize_key(key), _stringify(value)))
    return items


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


def raise_for_delivery(channel: str, status_code: int, body: str = "") -> None:
    if 200 <= status_code < 300:
        return
    detail = f": {body[:200]}" if body else ""
    raise DeliveryError(f"{channel} responded with HTTP {status_code}{detail}")


async def post_json(
    channel: str,
    url: str,
    body: object,
    headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            response = await client.post(url, json=body, headers=headers)
    except httpx.HTTPError as exc:
        raise DeliveryError(f"{channel} request failed: {str(exc) or type(exc).__name__}") from exc
    raise_for_delivery(channel, response.status_code, response.text)
