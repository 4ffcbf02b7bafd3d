"""Telegram command bot.

Long-polls ``getUpdates`` and answers subscriber commands. Every inbound
message is handled in its own task so a slow reply never holds up the
poll loop or the monitoring timers.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import httpx

from server_status_monitor.alerter.formatter import TIME_FORMAT, escape_markdown
from server_status_monitor.alerter.models import SenderStatus
from server_status_monitor.errors import MonitorError
from server_status_monitor.prober.models import ProbeResult
from server_status_monitor.storage.repos import (
    INCIDENT_ACTIVE,
    IncidentRepository,
    SubscriptionRepository,
    TargetRepository,
)

if TYPE_CHECKING:
    from server_status_monitor.alerter.channels.telegram import TelegramChannel
    from server_status_monitor.storage.database import Database

logger = logging.getLogger(__name__)

LONG_POLL_SECONDS = 30
ERROR_BACKOFF_SECONDS = 5.0
ALERTS_LOOKBACK = timedelta(hours=24)
ALERTS_LIMIT = 5

COMMANDS_HELP = (
    "/status - Current server status\n"
    "/subscribe - Receive notifications\n"
    "/unsubscribe - Stop notifications\n"
    "/alerts - Active alerts\n"
    "/uptime - Uptime statistics\n"
    "/help - Show this help"
)


class TelegramCommandBot:
    """Answers Telegram commands and maintains the subscriber set.

    Example:
        ```python
        bot = TelegramCommandBot(telegram_channel, db)
        await bot.start()
        ...
        await bot.stop()
        ```
    """

    def __init__(self, channel: TelegramChannel, db: Database) -> None:
        self.channel = channel
        self.db = db
        self._offset = 0
        self._poll_task: asyncio.Task[None] | None = None
        self._handlers: set[asyncio.Task[None]] = set()

    @property
    def is_running(self) -> bool:
        """Return True while the poll loop is alive."""
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self) -> None:
        """Start long-polling if the channel is ready."""
        if self.is_running:
            return
        if self.channel.status() != SenderStatus.READY:
            logger.warning("Telegram channel not ready, command bot not started")
            return
        self._poll_task = asyncio.create_task(self._poll_loop(), name="telegram-bot")
        logger.info("Telegram command bot started")

    async def stop(self) -> None:
        """Cancel the poll loop and any in-flight handlers."""
        tasks = list(self._handlers)
        if self._poll_task is not None:
            tasks.append(self._poll_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._handlers.clear()
        self._poll_task = None
        logger.info("Telegram command bot stopped")

    async def _poll_loop(self) -> None:
        while True:
            try:
                updates = await self._fetch_updates()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("Telegram getUpdates failed: %s", e)
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
                continue

            for update in updates:
                self._offset = max(self._offset, int(update.get("update_id", 0)) + 1)
                message = update.get("message")
                if message:
                    self.dispatch(message)

    async def _fetch_updates(self) -> list[dict[str, Any]]:
        result = await self.channel.call(
            "getUpdates",
            {"offset": self._offset, "timeout": LONG_POLL_SECONDS},
            timeout=LONG_POLL_SECONDS + 10,
        )
        if not result.get("ok"):
            raise ValueError(result.get("description", "getUpdates rejected"))
        updates: list[dict[str, Any]] = result.get("result", [])
        return updates

    def dispatch(self, message: dict[str, Any]) -> asyncio.Task[None]:
        """Handle one inbound message in an independent task."""
        task = asyncio.create_task(self.handle_message(message))
        self._handlers.add(task)
        task.add_done_callback(self._handlers.discard)
        return task

    async def handle_message(self, message: dict[str, Any]) -> None:
        """Record the sender and answer the command, if any."""
        chat = message.get("chat") or {}
        if "id" not in chat:
            return
        chat_id = str(chat["id"])
        text = (message.get("text") or "").strip()
        sender = message.get("from") or {}
        display_name = " ".join(
            part for part in (sender.get("first_name"), sender.get("last_name")) if part
        ) or sender.get("username")

        try:
            async with self.db.session() as session:
                await SubscriptionRepository(session).record_seen(
                    "telegram", chat_id, display_name=display_name
                )
        except MonitorError as e:
            logger.error("Failed to record Telegram sender %s: %s", chat_id, e)

        if not text.startswith("/"):
            return

        # "/status@MyBot arg" -> "/status"
        command = text.split()[0].split("@")[0].lower()
        try:
            reply = await self.handle_command(command, chat_id)
            if reply is not None:
                await self.channel.send_text(chat_id, reply)
        except MonitorError as e:
            logger.error(
                "Telegram command %s failed for %s: %s",
                command,
                chat_id,
                e,
                extra={"recipient": chat_id},
            )
            with contextlib.suppress(MonitorError):
                await self.channel.send_text(
                    chat_id, "❌ An error occurred while processing the command.", parse_mode=None
                )

    async def handle_command(self, command: str, chat_id: str) -> str | None:
        """Return the reply text for a command, or None if it is unknown."""
        if command == "/start":
            return (
                "🤖 *Server Status Bot*\n\n"
                "Welcome! This bot sends notifications when the server has problems.\n\n"
                f"📋 *Available commands:*\n{escape_markdown(COMMANDS_HELP)}"
            )
        if command == "/help":
            return (
                f"🆘 *Bot Help*\n\n📋 *Available commands:*\n{escape_markdown(COMMANDS_HELP)}\n\n"
                "📞 *Support:*\nContact the admin for further help."
            )
        if command == "/status":
            return await self._status_reply()
        if command == "/subscribe":
            await self._set_subscribed(chat_id, True)
            return (
                "✅ You are now subscribed to notifications!\n\n"
                "You will receive alerts when the server has problems."
            )
        if command == "/unsubscribe":
            await self._set_subscribed(chat_id, False)
            return "❌ You have unsubscribed from notifications."
        if command == "/alerts":
            return await self._alerts_reply()
        if command == "/uptime":
            return await self._uptime_reply()
        return None

    async def _set_subscribed(self, chat_id: str, wants: bool) -> None:
        async with self.db.session() as session:
            await SubscriptionRepository(session).set_subscribed("telegram", chat_id, wants)
        logger.info("Telegram chat %s %s", chat_id, "subscribed" if wants else "unsubscribed")

    async def _status_reply(self) -> str:
        async with self.db.session() as session:
            target = await TargetRepository(session).first_active()
        if target is None:
            return "❌ No active server found"

        if target.last_status:
            result = ProbeResult.from_dict(target.last_status)
            last_check = result.checked_at.strftime(TIME_FORMAT)
        else:
            result = ProbeResult.failed("Not checked yet")
            last_check = "Never"

        header = "🟢 *SERVER ONLINE*" if result.healthy else "🔴 *SERVER OFFLINE*"
        footer = (
            "✅ All systems operational" if result.healthy else "⚠️ The server is having problems"
        )
        return (
            f"{header}\n\n"
            f"*{escape_markdown(target.name)}*\n"
            f"📍 {escape_markdown(target.endpoint)}\n"
            f"👥 Players: {result.occupancy.current}/{result.occupancy.max}\n"
            f"📶 Ping: {result.latency_ms:.0f}ms\n"
            f"📊 Version: {escape_markdown(result.version_name or 'Unknown')}\n"
            f"🕐 Last Check: {last_check}\n\n"
            f"{footer}"
        )

    async def _alerts_reply(self) -> str:
        now = datetime.now(UTC)
        async with self.db.session() as session:
            incidents = await IncidentRepository(session).find(
                status=INCIDENT_ACTIVE, since=now - ALERTS_LOOKBACK, limit=ALERTS_LIMIT
            )
        if not incidents:
            return "✅ No active alerts in the last 24 hours."

        lines = ["🚨 *Active Alerts*", ""]
        for index, incident in enumerate(incidents, start=1):
            minutes = int((now - incident.created_at).total_seconds() // 60)
            lines.append(f"{index}. *{escape_markdown(incident.title)}*")
            lines.append(f"   {escape_markdown(incident.description)}")
            lines.append(f"   ⏰ {minutes} min ago")
            lines.append("")
        return "\n".join(lines).strip()

    async def _uptime_reply(self) -> str:
        async with self.db.session() as session:
            targets = await TargetRepository(session).list_active()
        if not targets:
            return "❌ No active server found"

        lines = ["📊 *Server Statistics*", ""]
        for target in targets:
            lines.append(f"*{escape_markdown(target.name)}*")
            lines.append(f"📈 Uptime: {target.uptime_percent:.2f}%")
            lines.append(f"🔍 Checks: {target.total_checks}")
            lines.append(f"⏱️ Downtime: {target.total_downtime / 60:.1f} min")
            lines.append("")
        return "\n".join(lines).strip()
