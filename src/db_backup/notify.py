"""Notification sinks for pipeline events.

A sink receives ``(severity, message, fields)`` and must never fail the
pipeline: delivery errors are logged and dropped.

Usage:
    from db_backup.notify import build_sink

    sink = build_sink(config.notifications)
    await sink.emit(Severity.ERROR, "Backup process was interrupted", {"stage": "restoring"})
"""

import logging
from typing import Any, Protocol

import httpx

from db_backup.config.models import NotificationConfig
from db_backup.models import Severity

logger = logging.getLogger(__name__)

_EMOJI: dict[Severity, str] = {
    Severity.INFO: "✅",
    Severity.WARNING: "⚠️",
    Severity.ERROR: "❌",
}

_LOG_LEVELS: dict[Severity, int] = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}

# Discord rejects message content longer than this
MAX_CONTENT_LENGTH = 2000


class NotificationSink(Protocol):
    """Receiver of pipeline notifications."""

    async def emit(
        self, severity: Severity, message: str, fields: dict[str, Any] | None = None
    ) -> None:
        ...


def format_message(
    severity: Severity, message: str, fields: dict[str, Any] | None = None
) -> str:
    """Render a notification as webhook text.

    Example:
        >>> format_message(Severity.ERROR, "Backup failed", {"stage": "restoring"})
        '❌ Backup failed\\n\\nℹ️ stage: restoring'
    """
    text = f"{_EMOJI[severity]} {message}"
    if fields:
        details = "\n".join(f"ℹ️ {key}: {value}" for key, value in fields.items())
        text += f"\n\n{details}"
    if len(text) > MAX_CONTENT_LENGTH:
        text = text[: MAX_CONTENT_LENGTH - 3] + "..."
    return text


class LoggingSink:
    """Writes notifications to the log."""

    async def emit(
        self, severity: Severity, message: str, fields: dict[str, Any] | None = None
    ) -> None:
        suffix = f" {fields}" if fields else ""
        logger.log(_LOG_LEVELS[severity], f"{message}{suffix}")


class DiscordWebhookSink:
    """Posts notifications to a Discord-compatible webhook.

    Args:
        webhook_url: Webhook endpoint.
        timeout_seconds: Request timeout.
    """

    def __init__(self, webhook_url: str, timeout_seconds: float = 10.0) -> None:
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds

    async def emit(
        self, severity: Severity, message: str, fields: dict[str, Any] | None = None
    ) -> None:
        payload = {"content": format_message(severity, message, fields)}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook notification: {e}")


class CompositeSink:
    """Fans notifications out to several sinks; one failing sink never stops the others."""

    def __init__(self, sinks: list[NotificationSink]) -> None:
        self.sinks = sinks

    async def emit(
        self, severity: Severity, message: str, fields: dict[str, Any] | None = None
    ) -> None:
        for sink in self.sinks:
            try:
                await sink.emit(severity, message, fields)
            except Exception as e:
                logger.error(f"Notification sink {type(sink).__name__} failed: {e}")


def build_sink(config: NotificationConfig) -> CompositeSink:
    """Logging sink, plus a webhook sink when ``webhook_url`` is configured."""
    sinks: list[NotificationSink] = [LoggingSink()]
    if config.webhook_url:
        sinks.append(DiscordWebhookSink(config.webhook_url, config.timeout_seconds))
    else:
        logger.warning("Webhook URL not configured; notifications go to the log only")
    return CompositeSink(sinks)
