from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest

from uptime_alarms.checker import CheckOrchestrator, hash_content, next_monitor_state
from uptime_alarms.models import (
    CertificateInfo,
    JsonParsingConfig,
    MonitorState,
    MonitorStatus,
    ProbeContext,
    ProbeFailure,
    ProbeOutcome,
    ProbeSuccess,
)
from uptime_alarms.state import InMemoryMonitorStateStore, StateStoreError

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int) -> None:
        self.now = self.now + timedelta(minutes=minutes)


class FakeProber:
    def __init__(self, outcomes: list[ProbeOutcome]) -> None:
        self.outcomes = outcomes
        self.urls: list[str] = []

    async def __aenter__(self) -> FakeProber:
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        return None

    async def probe(self, url: str) -> ProbeOutcome:
        self.urls.append(url)
        return self.outcomes.pop(0)


class FakeContextProvider:
    async def resolve(self) -> ProbeContext:
        return ProbeContext(ip="198.51.100.4", region="eu-central")


class FakeCertInspector:
    def __init__(self, info: CertificateInfo) -> None:
        self.info = info
        self.urls: list[str] = []

    async def __call__(self, url: str, timeout_seconds: float = 5.0) -> CertificateInfo:
        self.urls.append(url)
        return self.info


class FailingStateStore(InMemoryMonitorStateStore):
    async def upsert(self, state: MonitorState) -> None:
        raise StateStoreError("disk full")


def success(content: str = "<html>ok</html>", **kwargs: object) -> ProbeSuccess:
    values: dict[str, object] = {
        "status_code": 200,
        "ttfb_ms": 40,
        "total_ms": 90,
        "redirects": 1,
        "response_bytes": len(content),
        "content": content,
        "content_type": "text/html",
    }
    values.update(kwargs)
    return ProbeSuccess(**values)  # type: ignore[arg-type]


def failure() -> ProbeFailure:
    return ProbeFailure(status_code=502, ttfb_ms=30, total_ms=35, error="HTTP 502: Bad Gateway")


def make_orchestrator(
    outcomes: list[ProbeOutcome],
    store: InMemoryMonitorStateStore | None = None,
    clock: FakeClock | None = None,
    cert: CertificateInfo | None = None,
) -> tuple[CheckOrchestrator, FakeProber, FakeCertInspector]:
    prober = FakeProber(outcomes)
    inspector = FakeCertInspector(cert or CertificateInfo(valid=True, expiry=1_900_000_000_000))
    orchestrator = CheckOrchestrator(
        state_store=store or InMemoryMonitorStateStore(),
        context_provider=FakeContextProvider(),  # type: ignore[arg-type]
        prober_factory=lambda: prober,  # type: ignore[arg-type,return-value]
        inspect_cert=inspector,
        clock=clock or FakeClock(T0),
        env="test",
    )
    return orchestrator, prober, inspector


def test_streak_rules() -> None:
    first_down = next_monitor_state("m1", MonitorStatus.DOWN, None, T0)
    assert first_down.consecutive_failures == 1
    assert first_down.last_change_at == T0

    second_down = next_monitor_state("m1", MonitorStatus.DOWN, first_down, T0 + timedelta(minutes=1))
    assert second_down.consecutive_failures == 2
    assert second_down.last_change_at == T0
    assert second_down.last_checked_at == T0 + timedelta(minutes=1)

    recovered = next_monitor_state("m1", MonitorStatus.UP, second_down, T0 + timedelta(minutes=2))
    assert recovered.consecutive_failures == 0
    assert recovered.last_change_at == T0 + timedelta(minutes=2)

    down_after_up = next_monitor_state("m1", MonitorStatus.DOWN, recovered, T0 + timedelta(minutes=3))
    assert down_after_up.consecutive_failures == 1


def test_first_up_check_sets_last_change() -> None:
    state = next_monitor_state("m1", MonitorStatus.UP, None, T0)
    assert state.consecutive_failures == 0
    assert state.last_change_at == T0


def test_repeated_status_keeps_last_change() -> None:
    previous = MonitorState(
        monitor_id="m1",
        status=MonitorStatus.UP,
        consecutive_failures=0,
        last_change_at=T0 - timedelta(days=3),
        last_checked_at=T0 - timedelta(minutes=1),
    )
    state = next_monitor_state("m1", MonitorStatus.UP, previous, T0)
    assert state.last_change_at == T0 - timedelta(days=3)
    assert state.last_checked_at == T0


@pytest.mark.asyncio
async def test_successful_check_builds_full_result() -> None:
    store = InMemoryMonitorStateStore()
    orchestrator, prober, inspector = make_orchestrator([success()], store=store)

    result = await orchestrator.check_uptime("m1", "example.com")

    assert prober.urls == ["https://example.com"]
    assert inspector.urls == ["https://example.com"]
    assert result.status == MonitorStatus.UP
    assert result.previous_status is None
    assert result.failure_streak == 0
    assert result.http_code == 200
    assert result.redirect_count == 1
    assert result.content_hash == hash_content("<html>ok</html>")
    assert result.ssl_valid == 1
    assert result.ssl_expiry == 1_900_000_000_000
    assert result.probe_ip == "198.51.100.4"
    assert result.probe_region == "eu-central"
    assert result.check_type == "http"
    assert result.env == "test"
    assert result.error == ""
    assert result.timestamp == int(T0.timestamp() * 1000)

    state = await store.get("m1")
    assert state is not None
    assert state.status == MonitorStatus.UP
    assert state.last_checked_at == T0


@pytest.mark.asyncio
async def test_failed_check_skips_hash_but_still_inspects_certificate() -> None:
    orchestrator, _, inspector = make_orchestrator([failure()], cert=CertificateInfo())
    result = await orchestrator.check_uptime("m1", "https://example.com")
    assert result.status == MonitorStatus.DOWN
    assert result.http_code == 502
    assert result.error == "HTTP 502: Bad Gateway"
    assert result.content_hash == ""
    assert result.response_bytes == 0
    assert result.failure_streak == 1
    assert result.ssl_valid == 0
    assert inspector.urls == ["https://example.com"]


@pytest.mark.asyncio
async def test_expired_certificate_does_not_change_status() -> None:
    orchestrator, _, _ = make_orchestrator([success()], cert=CertificateInfo(valid=False, expiry=1_600_000_000_000))
    result = await orchestrator.check_uptime("m1", "https://example.com")
    assert result.status == MonitorStatus.UP
    assert result.ssl_valid == 0
    assert result.ssl_expiry == 1_600_000_000_000


@pytest.mark.asyncio
async def test_streak_accumulates_across_checks() -> None:
    clock = FakeClock(T0)
    store = InMemoryMonitorStateStore()
    orchestrator, _, _ = make_orchestrator([failure(), failure(), failure(), success()], store=store, clock=clock)

    streaks = []
    previous = []
    for _ in range(4):
        result = await orchestrator.check_uptime("m1", "https://example.com")
        streaks.append(result.failure_streak)
        previous.append(result.previous_status)
        clock.advance(1)

    assert streaks == [1, 2, 3, 0]
    assert previous == [None, MonitorStatus.DOWN, MonitorStatus.DOWN, MonitorStatus.DOWN]
    state = await store.get("m1")
    assert state is not None
    assert state.last_change_at == T0 + timedelta(minutes=3)


@pytest.mark.asyncio
async def test_json_extraction_is_attached() -> None:
    body = {"status": "ok", "build": {"sha": "abc"}}
    outcome = success(
        content=json.dumps(body, separators=(",", ":")),
        content_type="application/json",
        parsed_json=body,
    )
    orchestrator, _, _ = make_orchestrator([outcome])
    config = JsonParsingConfig(mode="manual", fields=["build.sha"])
    result = await orchestrator.check_uptime("m1", "https://api.example.com", json_config=config)
    assert result.json_data == '{"build.sha":"abc"}'


@pytest.mark.asyncio
async def test_state_store_failure_propagates() -> None:
    orchestrator, _, _ = make_orchestrator([success()], store=FailingStateStore())
    with pytest.raises(StateStoreError):
        await orchestrator.check_uptime("m1", "https://example.com")
