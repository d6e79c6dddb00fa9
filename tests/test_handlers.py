"""Tests for the reference bot's command and callback handlers."""

import sys
import os
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from bot import UsageCounter, build_registry
from bot.callbacks import handle_callback_query
from bot.handlers import (
    handle_echo,
    handle_edited_message,
    handle_help,
    handle_ping,
    handle_start,
    handle_stats,
)
from core.extensions import ExtensionStore
from engine.commands import CommandInvocation
from engine.context import Context
from engine.dispatcher import DispatchStats, Dispatcher
from engine.registry import CommandEntry, HandlerRegistry
from sdk.models import Chat, Message, Update, UpdateKind, User


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture()
def api() -> MagicMock:
    """Async API façade double; every call succeeds."""
    mock = MagicMock()
    mock.send_message = AsyncMock()
    mock.answer_callback_query = AsyncMock(return_value=True)
    return mock


@pytest.fixture()
def data() -> ExtensionStore:
    store = ExtensionStore()
    store.insert(build_registry())
    return store


def _make_message(user_id: int, text: str, chat_id: int = 1000) -> Message:
    """Build a minimal SDK Message model for handler tests."""
    return Message(
        message_id=1,
        date=0,
        chat=Chat(id=chat_id, type="private"),
        from_field=User(id=user_id, is_bot=False, first_name=f"User{user_id}"),
        text=text,
    )


def _make_ctx(api, data, text: str, args: tuple = ()) -> tuple:
    message = _make_message(42, text)
    update = Update(update_id=1, message=message)
    name = text.split()[0].lstrip("/")
    ctx = Context(api=api, data=data, update=update, command=CommandInvocation(name=name, args=args, raw=text))
    return ctx, message


def _make_callback_update(data: str, with_message: bool = True) -> Update:
    """Build a minimal callback_query update."""
    payload = {
        "id": "cb123",
        "from": {"id": 42, "is_bot": False, "first_name": "User42"},
        "chat_instance": "test",
        "data": data,
    }
    if with_message:
        payload["message"] = {"message_id": 10, "date": 0, "chat": {"id": 1000, "type": "private"}, "text": "menu"}
    return Update.model_validate({"update_id": 2, "callback_query": payload})


# ── Registry ─────────────────────────────────────────────────────────────────


class TestRegistry:
    def test_build_registry_contents(self) -> None:
        registry = build_registry()
        assert set(registry.commands) == {"start", "help", "ping", "echo", "stats"}
        assert set(registry.events) == {UpdateKind.CALLBACK_QUERY, UpdateKind.EDITED_MESSAGE}
        assert registry.get("echo").min_args == 1
        assert registry.get("ping").max_args == 0

    def test_every_command_has_description(self) -> None:
        assert all(entry.description for entry in build_registry().commands.values())


# ── Command handlers ─────────────────────────────────────────────────────────


class TestCommandHandlers:
    @pytest.mark.asyncio
    async def test_start_greets_with_help_button(self, api, data) -> None:
        ctx, message = _make_ctx(api, data, "/start")
        await handle_start(ctx, message)

        chat_id, text = api.send_message.await_args.args
        assert chat_id == 1000
        assert "User42" in text
        markup = api.send_message.await_args.kwargs["reply_markup"]
        assert markup.inline_keyboard[0][0].callback_data == "/help"

    @pytest.mark.asyncio
    async def test_help_lists_registered_commands(self, api, data) -> None:
        ctx, message = _make_ctx(api, data, "/help")
        await handle_help(ctx, message)

        text = api.send_message.await_args.args[1]
        for name in ("/start", "/help", "/ping", "/echo", "/stats"):
            assert name in text

    @pytest.mark.asyncio
    async def test_help_without_registry(self, api) -> None:
        ctx, message = _make_ctx(api, ExtensionStore(), "/help")
        await handle_help(ctx, message)
        assert api.send_message.await_args.args[1] == "No commands are available."

    @pytest.mark.asyncio
    async def test_ping_replies_to_message(self, api, data) -> None:
        ctx, message = _make_ctx(api, data, "/ping")
        await handle_ping(ctx, message)

        api.send_message.assert_awaited_once_with(1000, "🏓 pong", reply_to_message_id=1)

    @pytest.mark.asyncio
    async def test_echo_joins_arguments(self, api, data) -> None:
        ctx, message = _make_ctx(api, data, "/echo hello   world", args=("hello", "world"))
        await handle_echo(ctx, message)

        api.send_message.assert_awaited_once_with(1000, "hello world")

    @pytest.mark.asyncio
    async def test_stats_reports_usage_and_dispatch_counters(self, api, data) -> None:
        data.insert(DispatchStats(dispatched=4, handled=3, failed=1))
        for text in ("/ping", "/ping"):
            ctx, message = _make_ctx(api, data, text)
            await handle_ping(ctx, message)

        ctx, message = _make_ctx(api, data, "/stats")
        await handle_stats(ctx, message)

        text = api.send_message.await_args.args[1]
        assert "Commands used: 3" in text
        assert "/ping: 2" in text
        assert "/stats: 1" in text
        assert "failed 1" in text
        assert data.require(UsageCounter).total == 3


class TestEditedMessage:
    def test_edit_counted(self, api, data) -> None:
        update = Update(update_id=3, edited_message=_make_message(42, "fixed typo"))
        ctx = Context(api=api, data=data, update=update)

        handle_edited_message(ctx, update)

        assert data.require(UsageCounter).per_command["edited_message"] == 1


# ── Callback queries ─────────────────────────────────────────────────────────


class TestCallbackQuery:
    @pytest.mark.asyncio
    async def test_help_button_runs_help(self, api, data) -> None:
        update = _make_callback_update("/help")
        await handle_callback_query(Context(api=api, data=data, update=update), update)

        api.answer_callback_query.assert_awaited_once_with("cb123")
        assert "/ping" in api.send_message.await_args.args[1]

    @pytest.mark.asyncio
    async def test_command_needing_args_not_run(self, api, data) -> None:
        update = _make_callback_update("/echo")
        await handle_callback_query(Context(api=api, data=data, update=update), update)

        api.answer_callback_query.assert_awaited_once_with("cb123")
        api.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sync_command_button_runs(self, api) -> None:
        seen = []

        def handle_note(ctx, message) -> None:
            seen.append((ctx.command.name, message.message_id))

        store = ExtensionStore()
        store.insert(HandlerRegistry(commands=[CommandEntry("note", handle_note)]))
        update = _make_callback_update("/note")
        await handle_callback_query(Context(api=api, data=store, update=update), update)

        api.answer_callback_query.assert_awaited_once_with("cb123")
        assert seen == [("note", 10)]

    @pytest.mark.asyncio
    async def test_unknown_data_acknowledged(self, api, data) -> None:
        update = _make_callback_update("something")
        await handle_callback_query(Context(api=api, data=data, update=update), update)

        api.answer_callback_query.assert_awaited_once_with("cb123")
        api.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_message(self, api, data) -> None:
        update = _make_callback_update("/help", with_message=False)
        await handle_callback_query(Context(api=api, data=data, update=update), update)

        api.answer_callback_query.assert_awaited_once_with("cb123", "❌ Could not process.")


# ── Through the dispatcher ───────────────────────────────────────────────────


class TestDispatchedBot:
    @pytest.mark.asyncio
    async def test_echo_without_args_is_unhandled(self, api, data) -> None:
        dispatcher = Dispatcher(data.require(HandlerRegistry), api, data)
        update = Update(update_id=9, message=_make_message(42, "/echo"))

        assert dispatcher.dispatch(update) is None
        api.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_echo_with_args_dispatched(self, api, data) -> None:
        dispatcher = Dispatcher(data.require(HandlerRegistry), api, data)
        update = Update(update_id=9, message=_make_message(42, "/echo hi there"))

        await dispatcher.dispatch(update)

        api.send_message.assert_awaited_once_with(1000, "hi there")
