"""Discord REST v10 helpers.

Thin async wrapper over the handful of endpoints the bridge uses: fetch a
channel, post to a channel or thread, reply to a message, start a thread on
a message. Failures raise ChatDeliveryError; callers decide whether to
surface or just log them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

from taskbridge.errors import ChatDeliveryError

logger = logging.getLogger(__name__)

API_BASE = "https://discord.com/api/v10"

# Discord rejects message content over 2000 characters
MAX_MESSAGE_LENGTH = 2000
TRUNCATION_MARKER = "\n...(truncated)"

# Channel types
CHANNEL_GUILD_TEXT = 0
CHANNEL_PUBLIC_THREAD = 11
CHANNEL_PRIVATE_THREAD = 12
THREAD_TYPES = (CHANNEL_PUBLIC_THREAD, CHANNEL_PRIVATE_THREAD)


def is_thread(channel: dict[str, Any]) -> bool:
    return channel.get("type") in THREAD_TYPES


def clamp_content(content: str) -> str:
    """Cut content so it fits in a single Discord message."""
    if len(content) > MAX_MESSAGE_LENGTH:
        keep = MAX_MESSAGE_LENGTH - len(TRUNCATION_MARKER)
        return content[:keep] + TRUNCATION_MARKER
    return content


class DiscordClient:
    """Discord REST client sharing one aiohttp.ClientSession."""

    def __init__(self, token: str, api_base: str = API_BASE, timeout: float = 10) -> None:
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._http: aiohttp.ClientSession | None = None

    async def get_http(self) -> aiohttp.ClientSession:
        """Get or create the REST session.

        The gateway opens its own session: this one carries a total timeout
        that would cut a long-lived websocket.
        """
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.closed:
            await self._http.close()
            self._http = None

    async def request(
        self, method: str, path: str, json_data: dict[str, Any] | None = None
    ) -> Any:
        """Make a Discord REST API request and return the decoded body."""
        http = await self.get_http()
        headers = {"Authorization": f"Bot {self.token}"}
        url = f"{self.api_base}{path}"

        try:
            async with http.request(method, url, headers=headers, json=json_data) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    logger.warning(
                        "[discord] %s %s -> %d: %s", method, path, resp.status, text[:200]
                    )
                    raise ChatDeliveryError(
                        f"Discord {method} {path} failed with {resp.status}",
                        status=resp.status,
                        body=text,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ChatDeliveryError(f"Discord {method} {path} failed: {e}") from e
        return json.loads(text) if text else {}

    async def get_current_user(self) -> dict[str, Any]:
        return await self.request("GET", "/users/@me")

    async def get_gateway_url(self) -> str:
        data = await self.request("GET", "/gateway/bot")
        return data.get("url", "wss://gateway.discord.gg")

    async def get_channel(self, channel_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/channels/{channel_id}")

    async def send_message(self, channel_id: str, content: str) -> dict[str, Any]:
        """Post a message to a channel or thread."""
        return await self.request(
            "POST", f"/channels/{channel_id}/messages", {"content": clamp_content(content)}
        )

    async def reply(self, channel_id: str, message_id: str, content: str) -> dict[str, Any]:
        """Post a message that references (replies to) another message."""
        return await self.request(
            "POST",
            f"/channels/{channel_id}/messages",
            {
                "content": clamp_content(content),
                "message_reference": {"message_id": message_id},
            },
        )

    async def start_thread(
        self,
        channel_id: str,
        message_id: str,
        name: str,
        auto_archive_duration: int = 60,
    ) -> dict[str, Any]:
        """Create a thread on an existing message. Returns the thread channel."""
        thread = await self.request(
            "POST",
            f"/channels/{channel_id}/messages/{message_id}/threads",
            {"name": name, "auto_archive_duration": auto_archive_duration},
        )
        if not isinstance(thread, dict) or not thread.get("id"):
            raise ChatDeliveryError(f"Thread creation on message {message_id} returned no id")
        return thread
