"""Tests for the task API client against a local aiohttp server."""

from __future__ import annotations

import pytest
import pytest_asyncio
from aiohttp import web

from taskbridge.errors import NetworkError, RemoteApiError
from taskbridge.services.task_client import TaskClient


def _build_app(seen: list[dict]) -> web.Application:
    async def create_session(request: web.Request) -> web.Response:
        body = await request.json()
        seen.append({"auth": request.headers.get("Authorization"), "body": body})
        if not body.get("prompt"):
            return web.json_response({"detail": "prompt is required"}, status=422)
        return web.json_response({"session_id": "devin-1", "url": "https://app.test/devin-1"})

    async def session_details(request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        if session_id == "missing":
            return web.json_response({"detail": "Session not found"}, status=404)
        return web.json_response(
            {"session_id": session_id, "status_enum": "working", "structured_output": {"k": 1}}
        )

    async def session_message(request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        seen.append({"message": (await request.json())["message"], "session": session_id})
        if session_id == "no-content":
            return web.Response(status=204)
        if session_id == "broken":
            return web.Response(status=500, text="internal failure")
        return web.json_response({"ok": True})

    async def list_sessions(request: web.Request) -> web.Response:
        return web.json_response(
            {
                "limit": request.query["limit"],
                "offset": request.query["offset"],
                "tags": request.query.getall("tags", []),
            }
        )

    async def delete_secret(request: web.Request) -> web.Response:
        if request.match_info["secret_id"] == "gone":
            return web.json_response({"ok": True})
        return web.Response(status=204)

    app = web.Application()
    app.router.add_post("/sessions", create_session)
    app.router.add_get("/sessions", list_sessions)
    app.router.add_get("/session/{session_id}", session_details)
    app.router.add_post("/session/{session_id}/message", session_message)
    app.router.add_delete("/secrets/{secret_id}", delete_secret)
    return app


@pytest.fixture
def seen():
    return []


@pytest_asyncio.fixture
async def client(aiohttp_server, seen):
    server = await aiohttp_server(_build_app(seen))
    task_client = TaskClient("secret-key", api_base=str(server.make_url("")), timeout=5)
    yield task_client
    await task_client.close()


@pytest.mark.asyncio
async def test_create_session_sends_prompt_and_bearer_token(client, seen):
    result = await client.create_session("write docs", title="Docs", tags=None)

    assert result["session_id"] == "devin-1"
    assert result["url"] == "https://app.test/devin-1"
    assert seen[0]["auth"] == "Bearer secret-key"
    # None-valued options are left out of the body
    assert seen[0]["body"] == {"prompt": "write docs", "title": "Docs"}


@pytest.mark.asyncio
async def test_create_session_rejects_unknown_options(client, seen):
    with pytest.raises(TypeError):
        await client.create_session("x", colour="blue")
    assert seen == []


@pytest.mark.asyncio
async def test_non_accepted_status_raises_with_detail(client):
    with pytest.raises(RemoteApiError) as exc_info:
        await client.create_session("")

    assert exc_info.value.status == 422
    assert exc_info.value.detail == "prompt is required"


@pytest.mark.asyncio
async def test_get_session_details(client):
    details = await client.get_session_details("devin-1")

    assert details["status_enum"] == "working"
    assert details["structured_output"] == {"k": 1}


@pytest.mark.asyncio
async def test_get_session_details_not_found(client):
    with pytest.raises(RemoteApiError) as exc_info:
        await client.get_session_details("missing")

    assert exc_info.value.status == 404
    assert exc_info.value.detail == "Session not found"


@pytest.mark.asyncio
@pytest.mark.parametrize("session_id", ["devin-1", "no-content"])
async def test_send_message_accepts_200_and_204(client, seen, session_id):
    assert await client.send_message(session_id, "hello") is None
    assert seen == [{"message": "hello", "session": session_id}]


@pytest.mark.asyncio
async def test_send_message_server_error_keeps_text_body(client):
    with pytest.raises(RemoteApiError) as exc_info:
        await client.send_message("broken", "hello")

    assert exc_info.value.status == 500
    assert exc_info.value.detail == "internal failure"


@pytest.mark.asyncio
async def test_list_sessions_repeats_tag_params(client):
    result = await client.list_sessions(limit=5, tags=["a", "b"])

    assert result == {"limit": "5", "offset": "0", "tags": ["a", "b"]}


@pytest.mark.asyncio
async def test_delete_secret_requires_204(client):
    await client.delete_secret("s-1")

    with pytest.raises(RemoteApiError) as exc_info:
        await client.delete_secret("gone")
    assert exc_info.value.status == 200


@pytest.mark.asyncio
async def test_upload_attachment_missing_file(client, tmp_path):
    with pytest.raises(FileNotFoundError):
        await client.upload_attachment(tmp_path / "nope.txt")


@pytest.mark.asyncio
async def test_unreachable_server_raises_network_error():
    task_client = TaskClient("k", api_base="http://127.0.0.1:1", timeout=2)
    try:
        with pytest.raises(NetworkError):
            await task_client.get_session_details("s1")
    finally:
        await task_client.close()
