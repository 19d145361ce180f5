"""Remote task (Devin) REST API client.

Stateless request/response wrapper: every call is one bounded HTTP request,
logged before sending and after the response. Non-accepted statuses raise
RemoteApiError, transport failures raise NetworkError. Nothing is retried
here; retry policy belongs to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Collection
from pathlib import Path
from typing import Any

import aiohttp

from taskbridge.config import DEFAULT_API_BASE
from taskbridge.errors import NetworkError, RemoteApiError

logger = logging.getLogger(__name__)

LOG_PAYLOAD_MAX = 500

# Optional fields accepted by POST /sessions
CREATE_SESSION_OPTIONS = frozenset({
    "snapshot_id",
    "playbook_id",
    "unlisted",
    "idempotent",
    "max_acu_limit",
    "planning_mode_agency",
    "secret_ids",
    "knowledge_ids",
    "tags",
    "title",
})


def _preview(data: Any) -> str:
    """Render a payload for the log, cut to LOG_PAYLOAD_MAX characters."""
    if data is None:
        return ""
    text = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False, default=str)
    if len(text) > LOG_PAYLOAD_MAX:
        return text[:LOG_PAYLOAD_MAX] + "...(truncated)"
    return text


class TaskClient:
    """Async client for the remote task API.

    Reuses one aiohttp.ClientSession for all requests. The session timeout
    bounds every call, so a poll tick never hangs past `timeout` seconds.
    """

    def __init__(
        self,
        api_key: str,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 10,
    ) -> None:
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._http: aiohttp.ClientSession | None = None

    async def _get_http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.closed:
            await self._http.close()
            self._http = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_data: dict[str, Any] | None = None,
        params: Any = None,
        data: Any = None,
        accept: Collection[int] = (200, 201),
        log_payload: str | None = None,
    ) -> Any:
        """Send one request and decode the response body.

        Returns the decoded JSON body, the raw text when the body is not
        JSON, or None for an empty body.
        """
        http = await self._get_http()
        url = f"{self.api_base}{path}"

        logger.info("[API Request] %s %s", method, path)
        payload = log_payload if log_payload is not None else _preview(json_data)
        if payload:
            logger.debug("  Payload: %s", payload)

        try:
            async with http.request(
                method, url, json=json_data, params=params, data=data
            ) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("[API Request Error] No response for %s %s: %s", method, path, e)
            raise NetworkError(f"No response for {method} {path}: {e}") from e

        body = _decode(text)
        if status not in accept:
            logger.error("[API Response Error] %d (%s %s)", status, method, path)
            if text:
                logger.error("  Error Data: %s", _preview(text))
            raise RemoteApiError(status, body, method=method, path=path)

        logger.info("[API Response] %d (%s %s)", status, method, path)
        if text:
            logger.debug("  Data: %s", _preview(text))
        return body

    # --- Core operations ---

    async def create_session(self, prompt: str, **options: Any) -> dict[str, Any]:
        """POST /sessions. Returns at least `session_id` and `url`."""
        unknown = set(options) - CREATE_SESSION_OPTIONS
        if unknown:
            raise TypeError(f"Unknown session options: {', '.join(sorted(unknown))}")
        payload: dict[str, Any] = {"prompt": prompt}
        payload.update({k: v for k, v in options.items() if v is not None})
        return await self._request("POST", "/sessions", json_data=payload)

    async def send_message(self, session_id: str, message: str) -> None:
        """POST /session/{id}/message. 200 and 204 both count as delivered."""
        await self._request(
            "POST",
            f"/session/{session_id}/message",
            json_data={"message": message},
            accept=(200, 204),
        )

    async def get_session_details(self, session_id: str) -> dict[str, Any]:
        """GET /session/{id}. Includes `status_enum` and `structured_output`."""
        return await self._request("GET", f"/session/{session_id}", accept=(200,))

    # --- Auxiliary operations (diagnostics, not used by the relay) ---

    async def list_sessions(
        self,
        limit: int = 100,
        offset: int = 0,
        tags: list[str] | None = None,
    ) -> dict[str, Any]:
        """GET /sessions with pagination and optional tag filter."""
        params: list[tuple[str, str]] = [("limit", str(limit)), ("offset", str(offset))]
        for tag in tags or []:
            params.append(("tags", tag))
        return await self._request("GET", "/sessions", params=params, accept=(200,))

    async def update_session_tags(self, session_id: str, tags: list[str]) -> dict[str, Any]:
        """PUT /session/{id}/tags."""
        return await self._request(
            "PUT", f"/session/{session_id}/tags", json_data={"tags": tags}, accept=(200,)
        )

    async def list_secrets(self) -> dict[str, Any]:
        """GET /secrets (metadata only)."""
        return await self._request("GET", "/secrets", accept=(200,))

    async def delete_secret(self, secret_id: str) -> None:
        """DELETE /secrets/{id}. Only 204 counts as deleted."""
        await self._request("DELETE", f"/secrets/{secret_id}", accept=(204,))

    async def list_audit_logs(
        self,
        limit: int = 100,
        before: str | None = None,
        after: str | None = None,
    ) -> dict[str, Any]:
        """GET /audit-logs, optionally bounded by ISO-8601 timestamps."""
        params: dict[str, str] = {"limit": str(limit)}
        if before:
            params["before"] = before
        if after:
            params["after"] = after
        return await self._request("GET", "/audit-logs", params=params, accept=(200,))

    async def get_enterprise_consumption(self, start_date: str, end_date: str) -> dict[str, Any]:
        """GET /enterprise/consumption for YYYY-MM-DD bounds."""
        return await self._request(
            "GET",
            "/enterprise/consumption",
            params={"start_date": start_date, "end_date": end_date},
            accept=(200,),
        )

    async def upload_attachment(self, file_path: str | Path) -> str:
        """POST /attachments as multipart. Returns the attachment URL."""
        path = Path(file_path)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        form = aiohttp.FormData()
        with path.open("rb") as f:
            form.add_field("file", f.read(), filename=path.name)

        body = await self._request(
            "POST",
            "/attachments",
            data=form,
            accept=(200, 201),
            log_payload=f"file {path}",
        )
        return body if isinstance(body, str) else json.dumps(body)


def _decode(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text
