"""Discord gateway connection over aiohttp websockets.

Identifies with the GUILDS, GUILD_MESSAGES and MESSAGE_CONTENT intents,
keeps the heartbeat going, and hands each MESSAGE_CREATE payload to a
callback in its own tracked task. `run_forever` reconnects after any
failure with a fixed delay.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

import aiohttp

from taskbridge.services.discord_client import DiscordClient

logger = logging.getLogger(__name__)

# Discord gateway intents
INTENT_GUILDS = 1 << 0
INTENT_GUILD_MESSAGES = 1 << 9
INTENT_MESSAGE_CONTENT = 1 << 15
INTENTS = INTENT_GUILDS | INTENT_GUILD_MESSAGES | INTENT_MESSAGE_CONTENT

# Gateway opcodes
OP_DISPATCH = 0
OP_HEARTBEAT = 1
OP_IDENTIFY = 2
OP_RECONNECT = 7
OP_INVALID_SESSION = 9
OP_HELLO = 10
OP_HEARTBEAT_ACK = 11

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]
ReadyHandler = Callable[[dict[str, Any]], Awaitable[None]]


class DiscordGateway:
    """Receives gateway events and dispatches messages to a handler."""

    def __init__(
        self,
        discord: DiscordClient,
        on_message: MessageHandler,
        on_ready: ReadyHandler | None = None,
    ) -> None:
        self.discord = discord
        self.on_message = on_message
        self.on_ready = on_ready
        self._background_tasks: set[asyncio.Task] = set()
        self._sequence: int | None = None

    def track_task(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Create a tracked background task that logs exceptions on completion."""
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)

        def _on_done(t: asyncio.Task) -> None:
            self._background_tasks.discard(t)
            if not t.cancelled() and t.exception():
                logger.error("Background task failed: %s", t.exception())

        task.add_done_callback(_on_done)
        return task

    async def run_forever(self, reconnect_delay: float = 5) -> None:
        """Connect, and reconnect after `reconnect_delay` seconds whenever the connection ends."""
        while True:
            try:
                await self.connect_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Gateway connection error: %s, reconnecting in %ss", e, reconnect_delay)
            else:
                logger.warning("Gateway connection closed, reconnecting in %ss", reconnect_delay)
            await asyncio.sleep(reconnect_delay)

    async def connect_once(self) -> None:
        """Run one gateway session until Discord closes it or asks for a reconnect."""
        ws_url = await self.discord.get_gateway_url() + "?v=10&encoding=json"
        heartbeat: asyncio.Task | None = None
        self._sequence = None

        async with aiohttp.ClientSession() as http:
            async with http.ws_connect(ws_url) as ws:
                try:
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            data = json.loads(msg.data)
                            op = data.get("op")
                            t = data.get("t")
                            d = data.get("d")
                            s = data.get("s")

                            if s is not None:
                                self._sequence = s

                            # Hello: identify and start heartbeating
                            if op == OP_HELLO:
                                interval = d["heartbeat_interval"] / 1000
                                await ws.send_json(self._identify_payload())
                                heartbeat = asyncio.create_task(
                                    self._heartbeat_loop(ws, interval)
                                )

                            elif op == OP_HEARTBEAT:
                                await ws.send_json({"op": OP_HEARTBEAT, "d": self._sequence})

                            elif op == OP_HEARTBEAT_ACK:
                                pass

                            elif op == OP_DISPATCH:
                                await self._dispatch(t, d)

                            elif op in (OP_RECONNECT, OP_INVALID_SESSION):
                                logger.warning("Gateway op %s, reconnecting...", op)
                                break

                        elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                            logger.warning("WebSocket closed/error")
                            break
                finally:
                    if heartbeat is not None:
                        heartbeat.cancel()

    async def _dispatch(self, event: str | None, payload: dict[str, Any]) -> None:
        if event == "MESSAGE_CREATE":
            self.track_task(self.on_message(payload))
        elif event == "READY":
            user = payload.get("user", {})
            logger.info("Ready! Logged in as %s (%s)", user.get("username"), user.get("id"))
            if self.on_ready is not None:
                await self.on_ready(payload)

    def _identify_payload(self) -> dict[str, Any]:
        return {
            "op": OP_IDENTIFY,
            "d": {
                "token": self.discord.token,
                "intents": INTENTS,
                "properties": {
                    "os": "linux",
                    "browser": "taskbridge",
                    "device": "taskbridge",
                },
            },
        }

    async def _heartbeat_loop(self, ws: aiohttp.ClientWebSocketResponse, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await ws.send_json({"op": OP_HEARTBEAT, "d": self._sequence})
            except (ConnectionError, RuntimeError):
                break

    def cancel_background_tasks(self) -> None:
        for task in list(self._background_tasks):
            task.cancel()
