"""Bridge assembly and lifecycle.

Creates and wires the bridge components:
- Initializes the database
- Creates the Discord, task API and directory services
- Creates the monitor manager and relay dispatcher
- Runs the gateway until shutdown, then stops every monitor
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from taskbridge.config import Config
from taskbridge.db import close_db, init_db
from taskbridge.dispatcher import RelayDispatcher
from taskbridge.errors import PersistenceError
from taskbridge.gateway import DiscordGateway
from taskbridge.notifier import Notifier
from taskbridge.services.directory import ThreadDirectory
from taskbridge.services.discord_client import DiscordClient
from taskbridge.services.task_client import TaskClient
from taskbridge.workers.session_monitor import MonitorManager

logger = logging.getLogger(__name__)


class Bridge:
    """Owns every long-lived component; constructed once per process."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.discord = DiscordClient(config.discord_bot_token, timeout=config.request_timeout)
        self.client = TaskClient(
            config.api_key, api_base=config.api_base, timeout=config.request_timeout
        )
        self.directory = ThreadDirectory()
        self.notifier = Notifier(self.discord, self.directory)
        self.monitors = MonitorManager(
            self.client, self.notifier, interval=config.poll_interval
        )
        self.dispatcher = RelayDispatcher(
            self.discord, self.client, self.directory, self.monitors
        )
        self.gateway = DiscordGateway(
            self.discord, self.dispatcher.handle_message, on_ready=self._on_ready
        )
        self._resumed = False

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run until stop_event is set, then shut down."""
        await init_db(self.config.db_path)
        gateway_task: asyncio.Task | None = None
        try:
            if await self._login(stop_event):
                gateway_task = asyncio.create_task(
                    self.gateway.run_forever(self.config.reconnect_delay), name="gateway"
                )
                await stop_event.wait()
        finally:
            await self.shutdown(gateway_task)

    async def _login(self, stop_event: asyncio.Event) -> bool:
        """Resolve the bot user, retrying every reconnect_delay seconds.

        Returns:
            False if shutdown was requested before login succeeded.
        """
        while not stop_event.is_set():
            try:
                me = await self.discord.get_current_user()
            except Exception as e:
                logger.error(
                    "Failed to log in to Discord: %s, retrying in %ss",
                    e, self.config.reconnect_delay,
                )
                try:
                    await asyncio.wait_for(stop_event.wait(), self.config.reconnect_delay)
                except asyncio.TimeoutError:
                    pass
                continue
            self.dispatcher.bot_user_id = me.get("id", "")
            logger.info("Connected as %s (%s)", me.get("username"), self.dispatcher.bot_user_id)
            return True
        return False

    async def _on_ready(self, payload: dict[str, Any]) -> None:
        user_id = payload.get("user", {}).get("id")
        if user_id:
            self.dispatcher.bot_user_id = user_id
        if self.config.resume_monitoring and not self._resumed:
            self._resumed = True
            self.gateway.track_task(self.resume_monitoring())

    async def resume_monitoring(self) -> int:
        """Re-attach monitors for every recorded thread whose session is still running."""
        try:
            records = await self.directory.list_all()
        except PersistenceError as e:
            logger.error("Cannot resume monitoring: %s", e)
            return 0

        resumed = 0
        for record in records:
            if await self.monitors.resume(record.session_id, record.thread_id):
                resumed += 1
        logger.info("Resumed monitoring for %d of %d sessions", resumed, len(records))
        return resumed

    async def shutdown(self, gateway_task: asyncio.Task | None = None) -> None:
        """Stop all monitors, disconnect, and release resources."""
        stopped = self.monitors.stop_all()
        logger.info("Stopped %d monitors", stopped)

        if gateway_task is not None:
            gateway_task.cancel()
            try:
                await gateway_task
            except asyncio.CancelledError:
                pass
        self.gateway.cancel_background_tasks()

        await self.client.close()
        await self.discord.close()
        await close_db()
