"""Tests for the push listener (FastAPI app and uvicorn runner)."""

import sys
import os
import asyncio
import socket
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from engine.exceptions import FatalSourceError
from engine.settings import WebhookOptions
from engine.webhook import SECRET_HEADER, WebhookListener, build_webhook_app
from sdk.exceptions import APIException
from sdk.models import UpdateKind


def _update_body(update_id: int = 1, text: str = "/ping") -> dict:
    return {
        "update_id": update_id,
        "message": {"message_id": 1, "date": 0, "chat": {"id": 1, "type": "private"}, "text": text},
    }


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


# ── ASGI app ─────────────────────────────────────────────────────────────────


class TestWebhookApp:
    @pytest.mark.asyncio
    async def test_valid_update_dispatched_and_acknowledged(self) -> None:
        dispatch = MagicMock()
        app = build_webhook_app("/hook", dispatch)

        async with _client(app) as client:
            resp = await client.post("/hook", json=_update_body(7))

        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        dispatch.assert_called_once()
        update = dispatch.call_args.args[0]
        assert update.update_id == 7
        assert update.kind is UpdateKind.MESSAGE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"{not json", b"", b"\xff\xfe", b"[1, 2]", b'{"message": {}}', b'{"update_id": "x"}'])
    async def test_unparseable_body_rejected(self, body: bytes) -> None:
        dispatch = MagicMock()
        app = build_webhook_app("/", dispatch)

        async with _client(app) as client:
            resp = await client.post("/", content=body, headers={"content-type": "application/json"})

        assert resp.status_code == 400
        dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_update_rejected(self) -> None:
        dispatch = MagicMock()
        app = build_webhook_app("/", dispatch)

        async with _client(app) as client:
            resp = await client.post("/", json={"update_id": 3, "message": {"text": "no chat"}})

        assert resp.status_code == 400
        dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_path_and_method(self) -> None:
        dispatch = MagicMock()
        app = build_webhook_app("/hook", dispatch)

        async with _client(app) as client:
            not_found = await client.post("/elsewhere", json=_update_body())
            not_allowed = await client.get("/hook")

        assert not_found.status_code == 404
        assert not_allowed.status_code == 405
        dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_secret_token_enforced(self) -> None:
        dispatch = MagicMock()
        app = build_webhook_app("/", dispatch, secret_token="s3cret")

        async with _client(app) as client:
            missing = await client.post("/", json=_update_body(1))
            wrong = await client.post("/", json=_update_body(2), headers={SECRET_HEADER: "nope"})
            right = await client.post("/", json=_update_body(3), headers={SECRET_HEADER: "s3cret"})

        assert missing.status_code == 403
        assert wrong.status_code == 403
        assert right.status_code == 200
        assert [c.args[0].update_id for c in dispatch.call_args_list] == [3]

    @pytest.mark.asyncio
    async def test_not_accepting_returns_503(self) -> None:
        dispatch = MagicMock()
        app = build_webhook_app("/", dispatch, is_accepting=lambda: False)

        async with _client(app) as client:
            resp = await client.post("/", json=_update_body())

        assert resp.status_code == 503
        dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_dispatch_error_still_acknowledged(self) -> None:
        dispatch = MagicMock(side_effect=RuntimeError("dispatcher broke"))
        app = build_webhook_app("/", dispatch)

        async with _client(app) as client:
            resp = await client.post("/", json=_update_body())

        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_arrival_order_preserved(self) -> None:
        seen = []
        app = build_webhook_app("/", lambda u: seen.append(u.update_id))

        async with _client(app) as client:
            for update_id in (4, 2, 9):
                await client.post("/", json=_update_body(update_id))

        assert seen == [4, 2, 9]


# ── Listener runner ──────────────────────────────────────────────────────────


class TestWebhookListener:
    @pytest.mark.asyncio
    async def test_registration_failure_is_fatal(self) -> None:
        api = MagicMock()
        api.set_webhook = AsyncMock(side_effect=APIException(400, {"description": "bad webhook"}))
        listener = WebhookListener(WebhookOptions(port=0, public_url="https://bot.example.com/hook"), api=api)

        with pytest.raises(FatalSourceError):
            await listener.run(MagicMock(), asyncio.Event())
        assert listener.bound_port is None

    @pytest.mark.asyncio
    async def test_public_url_without_api_is_fatal(self) -> None:
        listener = WebhookListener(WebhookOptions(port=0, public_url="https://bot.example.com/hook"))
        with pytest.raises(FatalSourceError):
            await listener.run(MagicMock(), asyncio.Event())

    @pytest.mark.asyncio
    async def test_bind_failure_is_fatal(self) -> None:
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen()
        port = blocker.getsockname()[1]
        try:
            listener = WebhookListener(WebhookOptions(host="127.0.0.1", port=port))
            with pytest.raises(FatalSourceError):
                await listener.run(MagicMock(), asyncio.Event())
        finally:
            blocker.close()

    @pytest.mark.asyncio
    async def test_serves_until_stopped(self) -> None:
        api = MagicMock()
        api.set_webhook = AsyncMock(return_value=True)
        options = WebhookOptions(
            host="127.0.0.1",
            port=0,
            path="/hook",
            secret_token="s3cret",
            public_url="https://bot.example.com/hook",
            drop_pending_updates=True,
        )
        listener = WebhookListener(options, api=api, allowed_updates=("message",))
        dispatch = MagicMock()
        stop = asyncio.Event()
        task = asyncio.create_task(listener.run(dispatch, stop))

        resp = None
        async with httpx.AsyncClient() as client:
            for _ in range(100):
                await asyncio.sleep(0.02)
                if listener.bound_port is None:
                    continue
                try:
                    resp = await client.post(
                        f"http://127.0.0.1:{listener.bound_port}/hook",
                        json=_update_body(11),
                        headers={SECRET_HEADER: "s3cret"},
                    )
                    break
                except httpx.TransportError:
                    continue

        stop.set()
        await asyncio.wait_for(task, timeout=5.0)

        assert resp is not None and resp.status_code == 200
        assert dispatch.call_args.args[0].update_id == 11
        api.set_webhook.assert_awaited_once_with(
            "https://bot.example.com/hook",
            secret_token="s3cret",
            allowed_updates=["message"],
            drop_pending_updates=True,
        )
