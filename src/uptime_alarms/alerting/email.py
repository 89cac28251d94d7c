from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage

from uptime_alarms.alerting.base import DeliveryError, metadata_items
from uptime_alarms.models import NotificationChannelName, NotificationPayload


class EmailChannel:
    name: NotificationChannelName = "email"

    def __init__(
        self,
        sender: str,
        password: str,
        recipients: list[str],
        host: str = "smtp.gmail.com",
        port: int = 465,
        username: str | None = None,
    ) -> None:
        self.sender = sender
        self.password = password
        self.recipients = recipients
        self.host = host
        self.port = port
        self.username = username or sender

    def build_message(self, payload: NotificationPayload) -> EmailMessage:
        subject = f"[Uptime Alert] {payload.title}"
        if payload.priority == "urgent":
            subject = f"[Uptime Alert][urgent] {payload.title}"
        lines = [payload.message]
        details = metadata_items(payload)
        if details:
            lines.append("")
            lines.extend(f"{label}: {value}" for label, value in details)
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        message["Subject"] = subject
        message.set_content("\n".join(lines))
        return message

    async def send(self, payload: NotificationPayload) -> None:
        message = self.build_message(payload)
        try:
            await asyncio.to_thread(self._send, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"email delivery failed: {exc}") from exc

    def _send(self, message: EmailMessage) -> None:
        with smtplib.SMTP_SSL(self.host, self.port, timeout=15) as smtp:
            smtp.login(self.username, self.password)
            smtp.send_message(message)
