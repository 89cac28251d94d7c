from uptime_alarms.alerting.base import DeliveryError, NotificationChannel
from uptime_alarms.alerting.discord import DiscordChannel
from uptime_alarms.alerting.dispatcher import NotificationDispatcher, build_channels
from uptime_alarms.alerting.email import EmailChannel
from uptime_alarms.alerting.slack import SlackChannel
from uptime_alarms.alerting.webhook import WebhookChannel

__all__ = [
    "DeliveryError",
    "NotificationChannel",
    "NotificationDispatcher",
    "build_channels",
    "SlackChannel",
    "DiscordChannel",
    "WebhookChannel",
    "EmailChannel",
]
