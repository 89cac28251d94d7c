from __future__ import annotations

import asyncio
import hashlib
import json
from collections.abc import Awaitable, Callable
from datetime import datetime

from uptime_alarms.certificate import inspect_certificate
from uptime_alarms.config import ProbeConfig
from uptime_alarms.json_parser import parse_json_response
from uptime_alarms.models import (
    CertificateInfo,
    CheckResult,
    JsonParsingConfig,
    MonitorState,
    MonitorStatus,
    ProbeContext,
    ProbeSuccess,
)
from uptime_alarms.probe_context import ProbeContextProvider
from uptime_alarms.prober import Prober, normalize_url
from uptime_alarms.state import MonitorStateStore, utc_now

CertificateInspector = Callable[..., Awaitable[CertificateInfo]]


def next_monitor_state(
    monitor_id: str,
    status: MonitorStatus,
    previous: MonitorState | None,
    now: datetime,
) -> MonitorState:
    previous_status = previous.status if previous is not None else None
    if status == MonitorStatus.DOWN:
        if previous is not None and previous_status == MonitorStatus.DOWN:
            streak = previous.consecutive_failures + 1
        else:
            streak = 1
    else:
        streak = 0

    if previous is not None and previous_status == status:
        last_change_at = previous.last_change_at
    else:
        last_change_at = now

    return MonitorState(
        monitor_id=monitor_id,
        status=status,
        consecutive_failures=streak,
        last_change_at=last_change_at,
        last_checked_at=now,
    )


def hash_content(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class CheckOrchestrator:
    """Turns one probe of a monitor into a ``CheckResult``.

    The monitor state is read after the probe and written back exactly once
    per call. State store errors are not caught here: a failed read or write
    means the check could not be recorded, which callers must tell apart
    from a DOWN result.
    """

    def __init__(
        self,
        state_store: MonitorStateStore,
        context_provider: ProbeContextProvider,
        probe_config: ProbeConfig | None = None,
        *,
        prober_factory: Callable[[], Prober] | None = None,
        inspect_cert: CertificateInspector = inspect_certificate,
        tls_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
        env: str = "prod",
    ) -> None:
        self.state_store = state_store
        self.context_provider = context_provider
        self.probe_config = probe_config or ProbeConfig()
        self.prober_factory = prober_factory or (lambda: Prober(self.probe_config))
        self.inspect_cert = inspect_cert
        self.tls_timeout_seconds = tls_timeout_seconds
        self.clock = clock
        self.env = env

    async def check_uptime(
        self,
        monitor_id: str,
        url: str,
        attempt: int = 1,
        json_config: JsonParsingConfig | None = None,
    ) -> CheckResult:
        normalized = normalize_url(url)
        now = self.clock()

        async with self.prober_factory() as prober:
            outcome, context = await asyncio.gather(prober.probe(normalized), self.context_provider.resolve())

        previous = await self.state_store.get(monitor_id)
        status = MonitorStatus.UP if outcome.ok else MonitorStatus.DOWN
        state = next_monitor_state(monitor_id, status, previous, now)
        await self.state_store.upsert(state)

        base = self._base_fields(monitor_id, normalized, now, attempt, context, state, previous)

        if not isinstance(outcome, ProbeSuccess):
            cert = await self._inspect(normalized)
            return CheckResult(
                **base,
                http_code=outcome.status_code,
                ttfb_ms=outcome.ttfb_ms,
                total_ms=outcome.total_ms,
                ssl_valid=int(cert.valid),
                ssl_expiry=cert.expiry,
                error=outcome.error,
            )

        cert, content_hash = await asyncio.gather(
            self._inspect(normalized),
            asyncio.to_thread(hash_content, outcome.content),
        )

        json_data: str | None = None
        if json_config is not None:
            body = outcome.parsed_json if outcome.parsed_json is not None else outcome.content
            extracted = parse_json_response(body, outcome.content_type, json_config)
            if extracted is not None:
                json_data = json.dumps(extracted, separators=(",", ":"), ensure_ascii=False)

        return CheckResult(
            **base,
            http_code=outcome.status_code,
            ttfb_ms=outcome.ttfb_ms,
            total_ms=outcome.total_ms,
            response_bytes=outcome.response_bytes,
            content_hash=content_hash,
            redirect_count=outcome.redirects,
            ssl_valid=int(cert.valid),
            ssl_expiry=cert.expiry,
            json_data=json_data,
        )

    async def _inspect(self, url: str) -> CertificateInfo:
        return await self.inspect_cert(url, timeout_seconds=self.tls_timeout_seconds)

    def _base_fields(
        self,
        monitor_id: str,
        url: str,
        now: datetime,
        attempt: int,
        context: ProbeContext,
        state: MonitorState,
        previous: MonitorState | None,
    ) -> dict[str, object]:
        return {
            "monitor_id": monitor_id,
            "url": url,
            "timestamp": int(now.timestamp() * 1000),
            "status": state.status,
            "attempt": attempt,
            "failure_streak": state.consecutive_failures,
            "probe_region": context.region,
            "probe_ip": context.ip,
            "env": self.env,
            "user_agent": self.probe_config.user_agent,
            "previous_status": previous.status if previous is not None else None,
        }
