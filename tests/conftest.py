"""Shared pytest fixtures for the taskbridge test suite.

Provides:
- In-memory SQLite database behind a ThreadDirectory
- FakeDiscord: records what the bridge posts, no network
- FakeTaskClient: scripted session details, no network
- A MonitorManager with a long interval, so tests drive ticks by hand
"""

from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio

from taskbridge.config import Config
from taskbridge.db import close_db, init_db
from taskbridge.dispatcher import RelayDispatcher
from taskbridge.errors import ChatDeliveryError
from taskbridge.notifier import Notifier
from taskbridge.services.directory import ThreadDirectory
from taskbridge.workers.session_monitor import MonitorManager

BOT_ID = "999"
TEXT_CHANNEL_ID = "100"


class FakeDiscord:
    """Stands in for DiscordClient; every post is recorded in order."""

    def __init__(self) -> None:
        self.token = "test-token"
        self.channels: dict[str, dict[str, Any]] = {
            TEXT_CHANNEL_ID: {"id": TEXT_CHANNEL_ID, "type": 0},
        }
        self.sent: list[tuple[str, str]] = []
        self.replies: list[tuple[str, str, str]] = []
        self.threads: list[dict[str, Any]] = []
        self.fail_send = False
        self.fail_start_thread = False
        self._next_thread = 500

    def add_thread(self, thread_id: str, owner_id: str = BOT_ID) -> None:
        self.channels[thread_id] = {"id": thread_id, "type": 11, "owner_id": owner_id}

    def messages_to(self, channel_id: str) -> list[str]:
        return [content for cid, content in self.sent if cid == channel_id]

    async def get_channel(self, channel_id: str) -> dict[str, Any]:
        if channel_id not in self.channels:
            raise ChatDeliveryError("Unknown Channel", status=404)
        return self.channels[channel_id]

    async def send_message(self, channel_id: str, content: str) -> dict[str, Any]:
        if self.fail_send:
            raise ChatDeliveryError("Missing Access", status=403)
        self.sent.append((channel_id, content))
        return {"id": str(len(self.sent)), "channel_id": channel_id}

    async def reply(self, channel_id: str, message_id: str, content: str) -> dict[str, Any]:
        self.replies.append((channel_id, message_id, content))
        return {"id": "r", "channel_id": channel_id}

    async def start_thread(
        self, channel_id: str, message_id: str, name: str, auto_archive_duration: int = 60
    ) -> dict[str, Any]:
        if self.fail_start_thread:
            raise ChatDeliveryError("Thread creation failed", status=400)
        self._next_thread += 1
        thread_id = str(self._next_thread)
        self.add_thread(thread_id)
        thread = {
            "id": thread_id,
            "name": name,
            "parent_id": channel_id,
            "auto_archive_duration": auto_archive_duration,
        }
        self.threads.append(thread)
        return thread


class FakeTaskClient:
    """Stands in for TaskClient.

    `details` is consumed one entry per get_session_details call; an
    Exception entry is raised instead of returned. The last entry repeats.
    """

    def __init__(self, details: list[Any] | None = None) -> None:
        self.details: list[Any] = list(details or [{"status_enum": "running"}])
        self.detail_calls: list[str] = []
        self.created: list[tuple[str, dict[str, Any]]] = []
        self.messages: list[tuple[str, str]] = []
        self.create_error: Exception | None = None
        self.send_error: Exception | None = None

    async def create_session(self, prompt: str, **options: Any) -> dict[str, Any]:
        if self.create_error:
            raise self.create_error
        self.created.append((prompt, options))
        return {"session_id": "devin-abc", "url": "https://app.devin.ai/sessions/abc"}

    async def send_message(self, session_id: str, message: str) -> None:
        if self.send_error:
            raise self.send_error
        self.messages.append((session_id, message))

    async def get_session_details(self, session_id: str) -> dict[str, Any]:
        self.detail_calls.append(session_id)
        item = self.details.pop(0) if len(self.details) > 1 else self.details[0]
        if isinstance(item, Exception):
            raise item
        return item


def make_config(**overrides: Any) -> Config:
    """Create a test Config with safe defaults (no real credentials)."""
    defaults = dict(
        discord_bot_token="test-token",
        api_key="test-key",
        api_base="http://localhost:0",
        request_timeout=5,
        db_path=":memory:",
        poll_interval=15,
        reconnect_delay=0,
        resume_monitoring=False,
        env_file="",
    )
    defaults.update(overrides)
    return Config(**defaults)


def message_event(
    content: str,
    channel_id: str = TEXT_CHANNEL_ID,
    *,
    message_id: str = "42",
    author_id: str = "7",
    bot: bool = False,
    mentions: list[str] | None = None,
    mention_everyone: bool = False,
) -> dict[str, Any]:
    """Build a MESSAGE_CREATE payload the way the gateway delivers it."""
    return {
        "id": message_id,
        "channel_id": channel_id,
        "content": content,
        "author": {"id": author_id, "username": "alice", "bot": bot},
        "mentions": [{"id": m} for m in (mentions or [])],
        "mention_everyone": mention_everyone,
    }


@pytest_asyncio.fixture
async def directory():
    """ThreadDirectory backed by in-memory SQLite."""
    await init_db(":memory:")
    yield ThreadDirectory()
    await close_db()


@pytest.fixture
def discord():
    return FakeDiscord()


@pytest.fixture
def task_client():
    return FakeTaskClient()


@pytest.fixture
def notifier(discord, directory):
    return Notifier(discord, directory)


@pytest_asyncio.fixture
async def monitors(task_client, notifier):
    """MonitorManager whose background ticks never fire during a test."""
    manager = MonitorManager(task_client, notifier, interval=3600)
    yield manager
    manager.stop_all()


@pytest.fixture
def dispatcher(discord, task_client, directory, monitors):
    return RelayDispatcher(discord, task_client, directory, monitors, bot_user_id=BOT_ID)

