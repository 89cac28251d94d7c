from __future__ import annotations

from datetime import UTC, datetime
from enum import IntEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

NotificationChannelName = Literal["slack", "discord", "email", "webhook"]
NotificationPriority = Literal["urgent", "normal"]
TriggerEvent = Literal["down", "up"]


class MonitorStatus(IntEnum):
    DOWN = 0
    UP = 1
    PENDING = 2
    MAINTENANCE = 3

    @property
    def label(self) -> str:
        return self.name


class MonitorState(BaseModel):
    monitor_id: str
    status: MonitorStatus
    consecutive_failures: int = Field(default=0, ge=0)
    last_change_at: datetime
    last_checked_at: datetime


class ProbeSuccess(BaseModel):
    ok: Literal[True] = True
    status_code: int
    ttfb_ms: int
    total_ms: int
    redirects: int
    response_bytes: int
    content: str
    content_type: str | None = None
    parsed_json: Any = None


class ProbeFailure(BaseModel):
    ok: Literal[False] = False
    status_code: int = 0
    ttfb_ms: int = 0
    total_ms: int
    error: str


ProbeOutcome = ProbeSuccess | ProbeFailure


class CertificateInfo(BaseModel):
    valid: bool = False
    expiry: int = 0


class ProbeContext(BaseModel):
    ip: str = "unknown"
    region: str


class JsonParsingConfig(BaseModel):
    enabled: bool = True
    mode: Literal["auto", "manual"] = "auto"
    fields: list[str] = Field(default_factory=list)


class MonitorSchedule(BaseModel):
    id: str
    url: str
    monitor_id: str | None = None
    json_parsing_config: JsonParsingConfig | None = None

    @property
    def state_key(self) -> str:
        return self.monitor_id or self.id


class CheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    monitor_id: str
    url: str
    timestamp: int
    status: MonitorStatus
    http_code: int
    ttfb_ms: int
    total_ms: int
    attempt: int = 1
    retries: int = 0
    failure_streak: int
    response_bytes: int = 0
    content_hash: str = ""
    redirect_count: int = 0
    probe_region: str
    probe_ip: str
    ssl_expiry: int = 0
    ssl_valid: int = 0
    env: str = "prod"
    check_type: str = "http"
    user_agent: str
    error: str = ""
    json_data: str | None = None
    previous_status: MonitorStatus | None = None

    @property
    def checked_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=UTC)

    def to_row(self) -> dict[str, Any]:
        row = self.model_dump(mode="json", exclude={"previous_status"})
        row["timestamp"] = self.checked_at.isoformat()
        row["ssl_expiry"] = (
            datetime.fromtimestamp(self.ssl_expiry / 1000, tz=UTC).isoformat() if self.ssl_expiry else None
        )
        return row


class TriggerConditions(BaseModel):
    consecutive_failures: int = Field(default=3, ge=1, le=10)
    cooldown_minutes: int = Field(default=5, ge=1, le=1440)


class AlarmConfig(BaseModel):
    id: str
    name: str
    enabled: bool = True
    monitor_id: str
    trigger_type: str = "uptime"
    notification_channels: list[NotificationChannelName] = Field(default_factory=list)
    slack_webhook_url: str | None = None
    discord_webhook_url: str | None = None
    email_addresses: list[str] = Field(default_factory=list)
    webhook_url: str | None = None
    webhook_headers: dict[str, str] = Field(default_factory=dict)
    trigger_conditions: TriggerConditions | None = None

    @property
    def conditions(self) -> TriggerConditions:
        return self.trigger_conditions if self.trigger_conditions is not None else TriggerConditions()


class AlarmTriggerHistoryRecord(BaseModel):
    id: str
    alarm_id: str
    monitor_id: str
    trigger_event: TriggerEvent
    triggered_at: datetime
    notifications_sent: dict[str, bool] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationPayload(BaseModel):
    title: str
    message: str
    priority: NotificationPriority = "normal"
    metadata: dict[str, Any] = Field(default_factory=dict)
