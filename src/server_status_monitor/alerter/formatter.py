"""Notification message formatter for multi-channel delivery.

This module turns incidents and recoveries into messages rendered for
Telegram Markdown, plain text (WhatsApp) and HTML email.
"""

from __future__ import annotations

from datetime import UTC, datetime
from html import escape as html_escape
from typing import TYPE_CHECKING

from server_status_monitor.alerter.models import NotificationMessage, NotificationPurpose

if TYPE_CHECKING:
    from server_status_monitor.storage.repos import IncidentDTO, TargetDTO

TIME_FORMAT = "%d/%m/%Y %H:%M:%S"

# Email header colors keyed by severity
SEVERITY_COLORS = {
    "critical": "#dc3545",
    "warning": "#ffc107",
    "info": "#17a2b8",
}
RECOVERY_COLOR = "#28a745"

_MARKDOWN_SPECIAL = ("\\", "_", "*", "`", "[")


def escape_markdown(text: str) -> str:
    """Escape characters that Telegram's legacy Markdown treats as markup."""
    for char in _MARKDOWN_SPECIAL:
        text = text.replace(char, f"\\{char}")
    return text


def format_duration(seconds: float) -> str:
    """Render an elapsed time as a short human phrase."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds} second{'s' if seconds != 1 else ''}"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''}"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''}"


def _email_html(color: str, heading: str, rows: list[tuple[str, str]], body: str) -> str:
    row_html = "".join(
        f"<p><strong>{html_escape(label)}:</strong> {html_escape(value)}</p>"
        for label, value in rows
    )
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<div style="background: {color}; color: white; padding: 20px; '
        'border-radius: 5px 5px 0 0;">'
        f'<h2 style="margin: 0;">{html_escape(heading)}</h2>'
        "</div>"
        '<div style="padding: 20px; background: #f8f9fa; border: 1px solid #dee2e6; '
        'border-top: none;">'
        f"<p>{html_escape(body)}</p><hr>{row_html}<hr>"
        '<p style="color: #6c757d; font-size: 12px;">'
        "This is an automated notification from the server status monitor."
        "</p></div></div>"
    )


class NotificationFormatter:
    """Formats incidents and recoveries into multi-channel messages."""

    def format_incident(
        self,
        incident: IncidentDTO,
        target: TargetDTO,
        *,
        now: datetime | None = None,
    ) -> NotificationMessage:
        """Format a newly opened incident."""
        now = now or datetime.now(UTC)
        timestamp = now.strftime(TIME_FORMAT)
        severity = incident.severity.upper()

        plain = (
            f"🚨 {severity}: {target.name}\n\n"
            f"{incident.description}\n\n"
            f"Time: {timestamp}"
        )
        markdown = (
            f"🚨 *{severity}: {escape_markdown(target.name)}*\n\n"
            f"{escape_markdown(incident.description)}\n\n"
            f"📍 {escape_markdown(target.endpoint)}\n"
            f"🕐 {timestamp}"
        )
        html = _email_html(
            SEVERITY_COLORS.get(incident.severity, SEVERITY_COLORS["info"]),
            incident.title,
            [
                ("Server", target.name),
                ("Server Address", target.endpoint),
                ("Time", timestamp),
                ("Severity", incident.severity),
            ],
            incident.description,
        )
        return NotificationMessage(
            title=incident.title,
            subject=f"[{severity}] {incident.title}",
            plain_text=plain,
            telegram_markdown=markdown,
            html=html,
            severity=incident.severity,
            purpose=NotificationPurpose.INCIDENT,
        )

    def format_recovery(
        self,
        incident: IncidentDTO,
        target: TargetDTO,
        *,
        now: datetime | None = None,
    ) -> NotificationMessage:
        """Format the notice sent when an offline incident resolves."""
        now = now or datetime.now(UTC)
        resolved_at = incident.resolved_at or now
        downtime = format_duration((resolved_at - incident.created_at).total_seconds())
        timestamp = now.strftime(TIME_FORMAT)

        plain = (
            f"✅ Server Recovery: {target.name}\n\n"
            f"Server is back online after being down for {downtime}.\n\n"
            f"Time: {timestamp}"
        )
        markdown = (
            f"✅ *Server Recovery: {escape_markdown(target.name)}*\n\n"
            f"Server is back online after being down for {downtime}.\n\n"
            f"🕐 {timestamp}"
        )
        html = _email_html(
            RECOVERY_COLOR,
            "✅ Server Recovery",
            [
                ("Server", target.name),
                ("Status", "Back Online"),
                ("Downtime", downtime),
                ("Time", timestamp),
            ],
            f"Server is back online after being down for {downtime}.",
        )
        return NotificationMessage(
            title=f"{target.name} Back Online",
            subject=f"[RECOVERY] {target.name} Back Online",
            plain_text=plain,
            telegram_markdown=markdown,
            html=html,
            severity=incident.severity,
            purpose=NotificationPurpose.RECOVERY,
        )

    def format_test(self, text: str | None = None) -> NotificationMessage:
        """Format an operator-triggered test notification."""
        body = text or "This is a test notification from the server status monitor."
        return NotificationMessage(
            title="Test Notification",
            subject="Test Notification",
            plain_text=f"Test Notification\n\n{body}",
            telegram_markdown=f"*Test Notification*\n\n{escape_markdown(body)}",
            html=_email_html(RECOVERY_COLOR, "Test Notification", [], body),
            severity="info",
            purpose=NotificationPurpose.TEST,
        )
