from __future__ import annotations

import asyncio
import json
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from uptime_alarms.models import AlarmConfig, AlarmTriggerHistoryRecord, MonitorSchedule, MonitorState, TriggerEvent


class StateStoreError(Exception):
    pass


class ScheduleNotFoundError(Exception):
    pass


def utc_now() -> datetime:
    return datetime.now(UTC)


def _atomic_dump(path: Path, payload: dict[str, Any] | list[dict[str, Any]]) -> None:
    with tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=True, indent=2, sort_keys=True)
        handle.write("\n")
        tmp_path = Path(handle.name)
    tmp_path.replace(path)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        raw = path.read_text(encoding="utf-8").strip()
        if not raw:
            return default
        return json.loads(raw)
    except (OSError, ValueError) as exc:
        raise StateStoreError(f"Could not read {path}: {exc}") from exc


class MonitorStateStore(Protocol):
    async def get(self, monitor_id: str) -> MonitorState | None: ...

    async def upsert(self, state: MonitorState) -> None: ...


class InMemoryMonitorStateStore:
    def __init__(self) -> None:
        self._states: dict[str, MonitorState] = {}

    async def get(self, monitor_id: str) -> MonitorState | None:
        return self._states.get(monitor_id)

    async def upsert(self, state: MonitorState) -> None:
        self._states[state.monitor_id] = state.model_copy()


class JsonMonitorStateStore:
    """Monitor states kept in one JSON document keyed by monitor id.

    Writes go through a temp file and an atomic rename; the lock only
    serialises writers inside this process.
    """

    def __init__(self, state_path: str) -> None:
        self.state_file = Path(state_path)
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    async def get(self, monitor_id: str) -> MonitorState | None:
        document = await asyncio.to_thread(self._load)
        raw = document.get(monitor_id)
        if raw is None:
            return None
        try:
            return MonitorState.model_validate(raw)
        except ValidationError as exc:
            raise StateStoreError(f"Invalid state for monitor {monitor_id}: {exc}") from exc

    async def upsert(self, state: MonitorState) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write, state)

    def _load(self) -> dict[str, Any]:
        parsed = _read_json(self.state_file, {})
        if not isinstance(parsed, dict):
            raise StateStoreError(f"State file {self.state_file} must contain a JSON object")
        return parsed

    def _write(self, state: MonitorState) -> None:
        document = self._load()
        document[state.monitor_id] = state.model_dump(mode="json")
        try:
            _atomic_dump(self.state_file, document)
        except OSError as exc:
            raise StateStoreError(f"Could not write {self.state_file}: {exc}") from exc


class AlarmRepository(Protocol):
    async def list_enabled_alarms(self, monitor_id: str, trigger_type: str = "uptime") -> list[AlarmConfig]: ...

    async def last_trigger_at(self, alarm_id: str, trigger_event: TriggerEvent) -> datetime | None: ...

    async def record_trigger(self, record: AlarmTriggerHistoryRecord) -> None: ...


def _matching(alarms: list[AlarmConfig], monitor_id: str, trigger_type: str) -> list[AlarmConfig]:
    return [
        alarm
        for alarm in alarms
        if alarm.enabled and alarm.monitor_id == monitor_id and alarm.trigger_type == trigger_type
    ]


def _latest(records: list[AlarmTriggerHistoryRecord], alarm_id: str, trigger_event: TriggerEvent) -> datetime | None:
    times = [
        record.triggered_at
        for record in records
        if record.alarm_id == alarm_id and record.trigger_event == trigger_event
    ]
    return max(times) if times else None


class InMemoryAlarmRepository:
    def __init__(self, alarms: list[AlarmConfig] | None = None) -> None:
        self.alarms = list(alarms or [])
        self.history: list[AlarmTriggerHistoryRecord] = []

    async def list_enabled_alarms(self, monitor_id: str, trigger_type: str = "uptime") -> list[AlarmConfig]:
        return _matching(self.alarms, monitor_id, trigger_type)

    async def last_trigger_at(self, alarm_id: str, trigger_event: TriggerEvent) -> datetime | None:
        return _latest(self.history, alarm_id, trigger_event)

    async def record_trigger(self, record: AlarmTriggerHistoryRecord) -> None:
        self.history.append(record)


class JsonAlarmRepository:
    """Alarm configs from a JSON list, trigger history as append-only JSON lines."""

    def __init__(self, alarms_path: str, history_path: str) -> None:
        self.alarms_file = Path(alarms_path)
        self.history_file = Path(history_path)
        self.history_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    async def list_enabled_alarms(self, monitor_id: str, trigger_type: str = "uptime") -> list[AlarmConfig]:
        return _matching(await asyncio.to_thread(self._load_alarms), monitor_id, trigger_type)

    async def last_trigger_at(self, alarm_id: str, trigger_event: TriggerEvent) -> datetime | None:
        return _latest(await asyncio.to_thread(self._load_history), alarm_id, trigger_event)

    async def record_trigger(self, record: AlarmTriggerHistoryRecord) -> None:
        line = json.dumps(record.model_dump(mode="json"), ensure_ascii=True, sort_keys=True)
        async with self._lock:
            await asyncio.to_thread(self._append, line)

    def _load_alarms(self) -> list[AlarmConfig]:
        parsed = _read_json(self.alarms_file, [])
        if not isinstance(parsed, list):
            return []
        alarms: list[AlarmConfig] = []
        for item in parsed:
            try:
                alarms.append(AlarmConfig.model_validate(item))
            except ValidationError:
                structlog.get_logger().warning("invalid_alarm_config_dropped", alarm=item)
        return alarms

    def _load_history(self) -> list[AlarmTriggerHistoryRecord]:
        if not self.history_file.exists():
            return []
        records: list[AlarmTriggerHistoryRecord] = []
        for line in self.history_file.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                records.append(AlarmTriggerHistoryRecord.model_validate_json(line))
            except ValidationError:
                structlog.get_logger().warning("invalid_trigger_record_dropped", line=line)
        return records

    def _append(self, line: str) -> None:
        with self.history_file.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


class ScheduleRepository(Protocol):
    async def get_schedule(self, schedule_id: str) -> MonitorSchedule: ...


class JsonScheduleRepository:
    def __init__(self, schedules_path: str) -> None:
        self.schedules_file = Path(schedules_path)

    async def get_schedule(self, schedule_id: str) -> MonitorSchedule:
        parsed = await asyncio.to_thread(_read_json, self.schedules_file, {})
        raw = parsed.get(schedule_id) if isinstance(parsed, dict) else None
        if not isinstance(raw, dict):
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")
        if not raw.get("url"):
            raise ScheduleNotFoundError(f"Schedule {schedule_id} has invalid data (missing url)")
        try:
            return MonitorSchedule.model_validate({"id": schedule_id, **raw})
        except ValidationError as exc:
            raise ScheduleNotFoundError(f"Schedule {schedule_id} has invalid data: {exc}") from exc
