"""Routes Discord MESSAGE_CREATE events.

  @bot <prompt> in a text channel  - start a session + thread
  mute / unmute in a bridge thread - toggle notifications for the thread
  aside ... in a bridge thread     - ignored, not sent to the session
  anything else in a bridge thread - forwarded to the session

This is a deterministic forwarder: thread messages are never answered by
the bot itself, only relayed.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from taskbridge.errors import ChatDeliveryError, PersistenceError, user_facing_error
from taskbridge.services.directory import ThreadDirectory
from taskbridge.services.discord_client import CHANNEL_GUILD_TEXT, DiscordClient, is_thread
from taskbridge.services.task_client import TaskClient
from taskbridge.workers.session_monitor import MonitorManager

logger = logging.getLogger(__name__)

ASIDE_KEYWORD = "aside"
MUTE_KEYWORD = "mute"
UNMUTE_KEYWORD = "unmute"

THREAD_NAME_MAX = 50
THREAD_AUTO_ARCHIVE_MINUTES = 60

MENTION_RE = re.compile(r"<@!?\d+>")


def extract_prompt(content: str) -> str:
    """Strip user mention markup from a message and trim it."""
    return MENTION_RE.sub("", content).strip()


def thread_name_for(prompt: str) -> str:
    if len(prompt) > THREAD_NAME_MAX:
        return prompt[: THREAD_NAME_MAX - 3] + "..."
    return prompt


def welcome_message(session_id: str, url: str) -> str:
    return (
        "Session started.\n"
        f"Session ID: `{session_id}`\n"
        f"Follow progress here: {url}\n\n"
        "Send instructions for the session in this thread.\n"
        f"(Start a message with `{ASIDE_KEYWORD}` to keep it out of the session.)\n"
        f"(Send `{MUTE_KEYWORD}` to silence notifications here, "
        f"`{UNMUTE_KEYWORD}` to resume them.)"
    )


class RelayDispatcher:
    """Classifies each inbound message and drives the directory, client and monitors."""

    def __init__(
        self,
        discord: DiscordClient,
        client: TaskClient,
        directory: ThreadDirectory,
        monitors: MonitorManager,
        bot_user_id: str = "",
    ) -> None:
        self.discord = discord
        self.client = client
        self.directory = directory
        self.monitors = monitors
        self.bot_user_id = bot_user_id

    async def handle_message(self, message: dict[str, Any]) -> None:
        """Handle one MESSAGE_CREATE payload. Never raises."""
        try:
            await self._route(message)
        except Exception:
            logger.exception(
                "Unhandled error processing message %s in channel %s",
                message.get("id"), message.get("channel_id"),
            )

    async def _route(self, message: dict[str, Any]) -> None:
        author = message.get("author", {})
        if author.get("bot") or (self.bot_user_id and author.get("id") == self.bot_user_id):
            return

        channel_id = message.get("channel_id", "")
        mentioned = self._mentions_bot(message)
        channel = await self.discord.get_channel(channel_id)

        if mentioned and channel.get("type") == CHANNEL_GUILD_TEXT:
            logger.info(
                "Mention from %s in channel %s", author.get("username", "unknown"), channel_id
            )
            await self.start_session(message)
            return

        if is_thread(channel) and channel.get("owner_id") == self.bot_user_id:
            await self.relay_thread_message(message)

    def _mentions_bot(self, message: dict[str, Any]) -> bool:
        if message.get("mention_everyone") or not self.bot_user_id:
            return False
        return any(m.get("id") == self.bot_user_id for m in message.get("mentions", []))

    # --- Mention: new session ---

    async def start_session(self, message: dict[str, Any]) -> None:
        channel_id = message["channel_id"]
        message_id = message["id"]

        prompt = extract_prompt(message.get("content", ""))
        if not prompt:
            await self.discord.reply(
                channel_id, message_id,
                "Please write what the session should do after the mention.",
            )
            return

        thread_id: str | None = None
        try:
            logger.info("Creating session with prompt: %r", prompt[:80])
            session = await self.client.create_session(prompt)
            session_id = session["session_id"]
            url = session.get("url", "")
            logger.info("Session created: %s (%s)", session_id, url)

            thread = await self.discord.start_thread(
                channel_id, message_id, thread_name_for(prompt),
                auto_archive_duration=THREAD_AUTO_ARCHIVE_MINUTES,
            )
            thread_id = thread["id"]
            logger.info("Thread created: %s (%s)", thread_id, thread.get("name"))

            try:
                await self.directory.create(thread_id, session_id)
            except PersistenceError as e:
                # Monitoring still starts; the thread just has no record
                logger.error("Failed to store session mapping for thread %s: %s", thread_id, e)
                await self.discord.send_message(
                    thread_id,
                    "⚠️ Failed to save this session to the database. "
                    "Some features (forwarding, mute, notifications) may not work.",
                )

            await self.discord.send_message(thread_id, welcome_message(session_id, url))
            await self.monitors.start(session_id, thread_id)
        except Exception as e:
            logger.error("Error processing mention %s: %s", message_id, e)
            reply = (
                "Failed to start the session or create the thread.\n"
                f"Error: {user_facing_error(e)}"
            )
            try:
                if thread_id:
                    await self.discord.send_message(thread_id, reply)
                else:
                    await self.discord.reply(channel_id, message_id, reply)
            except ChatDeliveryError as reply_error:
                logger.error("Failed to send error message to Discord: %s", reply_error)

    # --- Thread: relay ---

    async def relay_thread_message(self, message: dict[str, Any]) -> None:
        thread_id = message["channel_id"]
        message_id = message["id"]
        content = message.get("content", "")

        record = await self.directory.get(thread_id)
        if record is None:
            logger.warning("No session for thread %s. Ignoring message.", thread_id)
            return

        command = content.strip().lower()

        if command in (MUTE_KEYWORD, UNMUTE_KEYWORD):
            await self._set_mute(thread_id, message_id, record.muted, command == MUTE_KEYWORD)
            return

        if command.startswith(ASIDE_KEYWORD):
            logger.debug("Aside message in thread %s. Ignoring.", thread_id)
            return

        if record.muted:
            logger.info("[muted] Not forwarding message from thread %s", thread_id)
            return

        if not content:
            return

        logger.info(
            "%s -> [%s]: %s",
            message.get("author", {}).get("username", "unknown"),
            record.session_id,
            content[:80],
        )
        try:
            await self.client.send_message(record.session_id, content)
        except Exception as e:
            logger.error("Error sending message to session %s: %s", record.session_id, e)
            await self._safe_reply(
                thread_id, message_id,
                f"Failed to send the message to the session.\nError: {user_facing_error(e)}",
            )

    async def _set_mute(
        self, thread_id: str, message_id: str, currently_muted: bool, mute: bool
    ) -> None:
        if currently_muted == mute:
            await self._safe_reply(
                thread_id, message_id,
                "🔇 This thread is already muted." if mute else "🔊 This thread is not muted.",
            )
            return

        try:
            await self.directory.set_muted(thread_id, mute)
        except PersistenceError as e:
            logger.error("Failed to update mute state for thread %s: %s", thread_id, e)
            await self._safe_reply(thread_id, message_id, "❌ Failed to update the mute state.")
            return

        await self._safe_reply(
            thread_id, message_id,
            "🔇 Notifications from the session are muted in this thread."
            if mute else "🔊 This thread is unmuted.",
        )

    async def _safe_reply(self, channel_id: str, message_id: str, content: str) -> None:
        try:
            await self.discord.reply(channel_id, message_id, content)
        except ChatDeliveryError as e:
            logger.error("Failed to reply in %s: %s", channel_id, e)
