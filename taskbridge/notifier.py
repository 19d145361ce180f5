"""Mute-gated delivery of bridge notifications into Discord threads."""

from __future__ import annotations

import logging

from taskbridge.errors import ChatDeliveryError
from taskbridge.services.directory import ThreadDirectory
from taskbridge.services.discord_client import DiscordClient, is_thread

logger = logging.getLogger(__name__)


class Notifier:
    """Best-effort sink: never raises, so a monitor tick can't be broken by it."""

    def __init__(self, discord: DiscordClient, directory: ThreadDirectory) -> None:
        self.discord = discord
        self.directory = directory

    async def notify(self, thread_id: str, text: str) -> bool:
        """Send text into a thread unless it is muted or unknown.

        Returns:
            True if the message was delivered.
        """
        record = await self.directory.get(thread_id)
        if record is None:
            logger.info("[unknown] Suppressing message to thread %s", thread_id)
            return False
        if record.muted:
            logger.info("[muted] Suppressing message to thread %s", thread_id)
            return False

        try:
            channel = await self.discord.get_channel(thread_id)
            if not is_thread(channel):
                logger.error("Thread channel not found or invalid: %s", thread_id)
                return False
            await self.discord.send_message(thread_id, text)
        except ChatDeliveryError as e:
            logger.error("Failed to send message to thread %s: %s", thread_id, e)
            return False
        except Exception:
            logger.exception("Unexpected error sending to thread %s", thread_id)
            return False
        return True
