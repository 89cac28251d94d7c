from __future__ import annotations

import httpx
import structlog

from uptime_alarms.models import ProbeContext

UNKNOWN_IP = "unknown"


class ProbeContextProvider:
    def __init__(
        self,
        region: str,
        ip_lookup_url: str = "https://api.ipify.org?format=json",
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.region = region
        self.ip_lookup_url = ip_lookup_url
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def resolve(self) -> ProbeContext:
        return ProbeContext(ip=await self._lookup_ip(), region=self.region)

    async def _lookup_ip(self) -> str:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.get(self.ip_lookup_url)
            if not response.is_success:
                return UNKNOWN_IP
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            structlog.get_logger().debug("probe_ip_lookup_failed", error=str(exc) or type(exc).__name__)
            return UNKNOWN_IP
        ip = payload.get("ip") if isinstance(payload, dict) else None
        return ip if isinstance(ip, str) and ip.strip() else UNKNOWN_IP
