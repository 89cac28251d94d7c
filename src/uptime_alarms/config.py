from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


class ProbeConfig(BaseModel):
    timeout_seconds: float = 30.0
    max_redirects: int = 10
    user_agent: str = DEFAULT_USER_AGENT
    capture_body: bool = True

    @property
    def timeout_ms(self) -> int:
        return int(self.timeout_seconds * 1000)

    def browser_headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": (
                "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,"
                "image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
            ),
            "Accept-Language": "en-US,en;q=0.9",
            "Accept-Encoding": "gzip, deflate",
            "Cache-Control": "no-cache",
            "DNT": "1",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Sec-Fetch-User": "?1",
            "Upgrade-Insecure-Requests": "1",
        }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    probe_region: str = Field(default="default", alias="PROBE_REGION")
    app_env: str = Field(default="prod", alias="APP_ENV")

    probe_timeout_seconds: float = Field(default=30.0, alias="PROBE_TIMEOUT_SECONDS")
    probe_max_redirects: int = Field(default=10, alias="PROBE_MAX_REDIRECTS")
    probe_capture_body: bool = Field(default=True, alias="PROBE_CAPTURE_BODY")
    probe_user_agent: str = Field(default=DEFAULT_USER_AGENT, alias="PROBE_USER_AGENT")
    tls_timeout_seconds: float = Field(default=5.0, alias="TLS_TIMEOUT_SECONDS")
    ip_lookup_url: str = Field(default="https://api.ipify.org?format=json", alias="IP_LOOKUP_URL")
    ip_lookup_timeout_seconds: float = Field(default=5.0, alias="IP_LOOKUP_TIMEOUT_SECONDS")

    dashboard_base_url: str = Field(default="https://app.example.com/uptime", alias="DASHBOARD_BASE_URL")

    state_path: str = Field(default="state/monitor_state.json", alias="STATE_PATH")
    alarms_path: str = Field(default="state/alarms.json", alias="ALARMS_PATH")
    trigger_history_path: str = Field(default="state/trigger_history.jsonl", alias="TRIGGER_HISTORY_PATH")
    schedules_path: str = Field(default="state/schedules.json", alias="SCHEDULES_PATH")
    results_path: str = Field(default="state/results.jsonl", alias="RESULTS_PATH")

    signing_key: str | None = Field(default=None, alias="SIGNING_KEY")
    next_signing_key: str | None = Field(default=None, alias="NEXT_SIGNING_KEY")

    smtp_host: str = Field(default="smtp.gmail.com", alias="SMTP_HOST")
    smtp_port: int = Field(default=465, alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, alias="SMTP_USERNAME")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_sender: str | None = Field(default=None, alias="SMTP_SENDER")

    @model_validator(mode="after")
    def validate_smtp_credentials(self) -> Settings:
        if bool(self.smtp_username) != bool(self.smtp_password):
            raise ValueError("SMTP_USERNAME and SMTP_PASSWORD must be set together")
        return self

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_username and self.smtp_password)

    @property
    def email_sender(self) -> str:
        return self.smtp_sender or self.smtp_username or ""

    def probe_config(self) -> ProbeConfig:
        return ProbeConfig(
            timeout_seconds=self.probe_timeout_seconds,
            max_redirects=self.probe_max_redirects,
            user_agent=self.probe_user_agent,
            capture_body=self.probe_capture_body,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
