"""Background worker: polls remote sessions and reports changes to their threads.

One asyncio task per monitored session, owned by MonitorManager. Each task
sleeps for the poll interval and then runs one tick:
1. Fetches the session details (any failure stops the monitor)
2. Reports a status change
3. Reports a structured output change
4. Reports completion and stops on a terminal status

The order of those checks is fixed; a single tick can post all three
notifications. Mute is not checked here: the Notifier reads it from the
directory on every send, while the last-seen values are always updated.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from taskbridge.notifier import Notifier
from taskbridge.services.task_client import TaskClient

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 15
TERMINAL_STATUSES = frozenset({"blocked", "stopped", "finished", "suspended"})

# Structured output payload limit, keeps the fenced message under Discord's 2000
OUTPUT_PREVIEW_MAX = 1800
ELLIPSIS = "..."


class MonitorPhase(str, Enum):
    STARTING = "starting"
    ACTIVE = "active"
    STOPPED = "stopped"


@dataclass
class MonitoringState:
    """What was last reported for one session."""

    session_id: str
    thread_id: str
    last_status: str | None = None
    last_structured_output: Any = None
    phase: MonitorPhase = MonitorPhase.STARTING
    task: asyncio.Task | None = None


def truncate_output(output: Any) -> str:
    """Pretty-print structured output, cut to OUTPUT_PREVIEW_MAX characters."""
    text = json.dumps(output, indent=2, ensure_ascii=False, default=str)
    if len(text) > OUTPUT_PREVIEW_MAX:
        text = text[: OUTPUT_PREVIEW_MAX - len(ELLIPSIS)] + ELLIPSIS
    return text


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def outputs_equal(a: Any, b: Any) -> bool:
    """Structural JSON equality: key order is ignored, but 1, 1.0 and true differ."""
    return _canonical(a) == _canonical(b)


def status_changed_message(status: str | None) -> str:
    return f"Status changed: **{status or 'unknown'}**"


def output_changed_message(output: Any) -> str:
    return f"Structured output updated:\n```json\n{truncate_output(output)}\n```"


def terminal_message(status: str) -> str:
    return f"Session ended with status **{status}**. Monitoring stopped."


class MonitorManager:
    """Registry of active session monitors, keyed by session id.

    At most one monitor exists per session id. `start` rejects a second
    registration while the first is starting or active.
    """

    def __init__(
        self,
        client: TaskClient,
        notifier: Notifier,
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.client = client
        self.notifier = notifier
        self.interval = interval
        self._monitors: dict[str, MonitoringState] = {}
        self._starting: dict[str, MonitoringState] = {}
        self._closed = False

    def get(self, session_id: str) -> MonitoringState | None:
        """Return the monitor for a session, including one still seeding."""
        return self._monitors.get(session_id) or self._starting.get(session_id)

    def is_active(self, session_id: str) -> bool:
        return session_id in self._monitors

    @property
    def active_sessions(self) -> list[str]:
        return list(self._monitors)

    # --- Registration ---

    async def start(self, session_id: str, thread_id: str) -> bool:
        """Seed a monitor from one fetch and begin polling.

        On a failed seed fetch the thread is told monitoring could not start
        and nothing is registered.

        Returns:
            True if a monitor was registered.
        """
        state = self._claim(session_id, thread_id)
        if state is None:
            return False

        logger.info(
            "Starting monitoring for session %s (thread %s)", session_id, thread_id,
            extra={"session_id": session_id, "thread_id": thread_id},
        )
        try:
            details = await self.client.get_session_details(session_id)
        except Exception as e:
            logger.error(
                "Failed to get initial details for session %s: %s", session_id, e,
                extra={"session_id": session_id, "thread_id": thread_id},
            )
            state.phase = MonitorPhase.STOPPED
            await self.notifier.notify(
                thread_id,
                f"❌ Failed to fetch the initial state of session `{session_id}`; "
                "monitoring was not started.",
            )
            return False
        finally:
            self._starting.pop(session_id, None)

        return self._register(state, details)

    async def resume(self, session_id: str, thread_id: str) -> bool:
        """Re-attach a monitor after a restart.

        The fetched details become the baseline, so nothing already reported
        is re-sent. Sessions that already ended are skipped, and a failed
        fetch is only logged.
        """
        state = self._claim(session_id, thread_id)
        if state is None:
            return False

        try:
            details = await self.client.get_session_details(session_id)
        except Exception as e:
            logger.warning("Not resuming session %s: %s", session_id, e)
            state.phase = MonitorPhase.STOPPED
            return False
        finally:
            self._starting.pop(session_id, None)

        status = details.get("status_enum")
        if status in TERMINAL_STATUSES:
            logger.debug("Not resuming session %s: already %s", session_id, status)
            state.phase = MonitorPhase.STOPPED
            return False
        return self._register(state, details)

    def _claim(self, session_id: str, thread_id: str) -> MonitoringState | None:
        if self._closed:
            logger.warning("Monitor manager is shut down; not monitoring %s", session_id)
            return None
        if session_id in self._monitors or session_id in self._starting:
            logger.warning("Session %s is already monitored; ignoring registration", session_id)
            return None
        state = MonitoringState(session_id=session_id, thread_id=thread_id)
        self._starting[session_id] = state
        return state

    def _register(self, state: MonitoringState, details: dict[str, Any]) -> bool:
        session_id = state.session_id
        if self._closed:
            logger.warning("Monitor manager shut down while starting %s", session_id)
            state.phase = MonitorPhase.STOPPED
            return False

        state.last_status = details.get("status_enum")
        state.last_structured_output = details.get("structured_output")
        state.phase = MonitorPhase.ACTIVE
        self._monitors[session_id] = state
        state.task = asyncio.create_task(
            self._run(state), name=f"monitor:{session_id}"
        )
        state.task.add_done_callback(_log_task_failure)
        logger.info(
            "Initial status for %s: %s", session_id, state.last_status,
            extra={"session_id": session_id, "thread_id": state.thread_id},
        )
        return True

    # --- Polling ---

    def _owns(self, state: MonitoringState) -> bool:
        return self._monitors.get(state.session_id) is state

    async def _run(self, state: MonitoringState) -> None:
        # Exits once this state is no longer the registered monitor for its session
        while self._owns(state):
            await asyncio.sleep(self.interval)
            if not self._owns(state):
                return
            await self.tick(state.session_id)

    async def tick(self, session_id: str) -> None:
        """Poll once and report what changed since the last poll."""
        state = self._monitors.get(session_id)
        if state is None:
            logger.warning("Polling attempted for inactive session %s", session_id)
            return

        thread_id = state.thread_id
        context = {"session_id": session_id, "thread_id": thread_id}
        try:
            details = await self.client.get_session_details(session_id)
            new_status = details.get("status_enum")
            new_output = details.get("structured_output")

            if new_status != state.last_status:
                logger.info(
                    "Status changed for session %s: %s -> %s",
                    session_id, state.last_status, new_status,
                    extra=context,
                )
                await self.notifier.notify(thread_id, status_changed_message(new_status))
                state.last_status = new_status

            if not outputs_equal(new_output, state.last_structured_output):
                logger.info("Structured output changed for session %s", session_id, extra=context)
                if new_output is not None:
                    await self.notifier.notify(thread_id, output_changed_message(new_output))
                state.last_structured_output = new_output

            if new_status in TERMINAL_STATUSES:
                logger.info(
                    "Session %s reached terminal state: %s", session_id, new_status, extra=context
                )
                logger.debug("Final details for %s: %s", session_id, json.dumps(details, default=str))
                await self.notifier.notify(thread_id, terminal_message(new_status))
                self.stop(session_id)
        except Exception:
            logger.exception("Error polling session %s", session_id, extra=context)
            await self.notifier.notify(
                thread_id,
                f"❌ Error while fetching the state of session `{session_id}`. "
                "Monitoring stopped.",
            )
            self.stop(session_id)

    # --- Teardown ---

    def stop(self, session_id: str) -> bool:
        """Stop polling a session. Safe to call from inside its own tick.

        Returns:
            False (with a warning) if the session was not being monitored.
        """
        state = self._monitors.pop(session_id, None)
        if state is None:
            logger.warning("Attempted to stop monitoring for inactive session %s", session_id)
            return False

        state.phase = MonitorPhase.STOPPED
        task = state.task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        logger.info("Stopped monitoring for session %s", session_id)
        return True

    def stop_all(self) -> int:
        """Stop every monitor and refuse new ones. Does not wait for in-flight polls."""
        self._closed = True
        stopped = 0
        for session_id in list(self._monitors):
            if self.stop(session_id):
                stopped += 1
        return stopped


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def _log_task_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception():
        logger.error("Monitor task %s failed: %s", task.get_name(), task.exception())
