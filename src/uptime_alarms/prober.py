from __future__ import annotations

import asyncio
import json
import time

import httpx

from uptime_alarms.config import ProbeConfig
from uptime_alarms.models import ProbeFailure, ProbeOutcome, ProbeSuccess


class ProbeError(Exception):
    pass


def normalize_url(url: str) -> str:
    stripped = url.strip()
    if stripped.startswith(("http://", "https://")):
        return stripped
    return f"https://{stripped}"


def _elapsed_ms(start: float) -> int:
    return round((time.perf_counter() - start) * 1000)


def _is_json(content_type: str | None) -> bool:
    return content_type is not None and "application/json" in content_type.lower()


class Prober:
    """Runs a single reachability check against a URL.

    The first request is a HEAD; a 405 switches to GET, and a successful HEAD
    is repeated as GET so the body can be hashed (unless ``capture_body`` is
    off). Redirects are followed by hand so they can be counted and capped.
    Transport problems are reported as ``ProbeFailure`` values, never raised.
    """

    def __init__(self, config: ProbeConfig | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config or ProbeConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> Prober:
        self._client = httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            follow_redirects=False,
            headers=self.config.browser_headers(),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def probe(self, url: str) -> ProbeOutcome:
        if self._client is None:
            raise ProbeError("Prober must be used as an async context manager")

        target = normalize_url(url)
        start = time.perf_counter()
        try:
            async with asyncio.timeout(self.config.timeout_seconds):
                return await self._run(self._client, target, start)
        except (TimeoutError, httpx.TimeoutException):
            return ProbeFailure(total_ms=_elapsed_ms(start), error=f"Timeout after {self.config.timeout_ms}ms")
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as exc:
            return ProbeFailure(total_ms=_elapsed_ms(start), error=str(exc) or type(exc).__name__)

    async def _run(self, client: httpx.AsyncClient, url: str, start: float) -> ProbeOutcome:
        redirects = 0
        current = url
        use_head = True

        while True:
            method = "HEAD" if use_head else "GET"
            response = await client.send(client.build_request(method, current), stream=True)
            ttfb_ms = _elapsed_ms(start)
            try:
                location = response.headers.get("location")
                if response.is_redirect and location:
                    redirects += 1
                    if redirects > self.config.max_redirects:
                        return ProbeFailure(
                            total_ms=_elapsed_ms(start),
                            error=f"Too many redirects (max {self.config.max_redirects})",
                        )
                    current = str(response.url.join(location))
                    continue

                if use_head and response.status_code == 405:
                    use_head = False
                    continue

                if use_head and response.is_success and self.config.capture_body:
                    use_head = False
                    continue

                return await self._terminal(response, method, redirects, ttfb_ms, start)
            finally:
                await response.aclose()

    async def _terminal(
        self,
        response: httpx.Response,
        method: str,
        redirects: int,
        ttfb_ms: int,
        start: float,
    ) -> ProbeOutcome:
        await response.aread()
        content_type = response.headers.get("content-type")
        parsed_json = None
        content = response.text
        if _is_json(content_type) and content:
            try:
                parsed_json = json.loads(content)
            except ValueError as exc:
                return ProbeFailure(total_ms=_elapsed_ms(start), error=str(exc))
            content = json.dumps(parsed_json, separators=(",", ":"), ensure_ascii=False)
        total_ms = _elapsed_ms(start)

        if not response.is_success:
            return ProbeFailure(
                status_code=response.status_code,
                ttfb_ms=ttfb_ms,
                total_ms=total_ms,
                error=f"HTTP {response.status_code}: {response.reason_phrase}",
            )

        if method == "HEAD":
            declared = response.headers.get("content-length", "").strip()
            response_bytes = int(declared) if declared.isdigit() else 0
        else:
            response_bytes = len(content.encode("utf-8"))

        return ProbeSuccess(
            status_code=response.status_code,
            ttfb_ms=ttfb_ms,
            total_ms=total_ms,
            redirects=redirects,
            response_bytes=response_bytes,
            content=content,
            content_type=content_type,
            parsed_json=parsed_json,
        )
