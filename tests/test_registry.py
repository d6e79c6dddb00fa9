"""Tests for the immutable HandlerRegistry and RegistryBuilder."""

import sys
import os
import functools

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from engine.commands import CommandInvocation
from engine.exceptions import ConfigurationError, DuplicateHandlerError
from engine.registry import (
    Classification,
    CommandEntry,
    EventEntry,
    HandlerRegistry,
    RegistryBuilder,
)
from sdk.models import BotCommand, UpdateKind


async def async_handler(ctx, message) -> None:
    return None


def sync_handler(ctx, message) -> None:
    return None


def _message_with(name: str, *args: str) -> Classification:
    return Classification(UpdateKind.MESSAGE, CommandInvocation(name=name, args=tuple(args)))


# ── Entries ──────────────────────────────────────────────────────────────────


class TestCommandEntry:
    def test_leading_slash_stripped(self) -> None:
        entry = CommandEntry("/ping", async_handler)
        assert entry.command == "ping"
        assert entry.name == "/ping"

    @pytest.mark.parametrize("bad", ["", "/", "two words", "ping@bot", "a/b"])
    def test_invalid_names_rejected(self, bad: str) -> None:
        with pytest.raises(ConfigurationError):
            CommandEntry(bad, async_handler)

    def test_invalid_bounds_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            CommandEntry("x", async_handler, min_args=2, max_args=1)
        with pytest.raises(ConfigurationError):
            CommandEntry("x", async_handler, min_args=-1)

    def test_accepts(self) -> None:
        entry = CommandEntry("echo", async_handler, min_args=1, max_args=2)
        assert not entry.accepts(())
        assert entry.accepts(("a",))
        assert entry.accepts(("a", "b"))
        assert not entry.accepts(("a", "b", "c"))

    def test_is_async_detection(self) -> None:
        assert CommandEntry("a", async_handler).is_async
        assert not CommandEntry("b", sync_handler).is_async
        assert CommandEntry("c", functools.partial(async_handler)).is_async

    def test_is_async_sees_through_wraps(self) -> None:
        @functools.wraps(async_handler)
        def wrapper(ctx, message):
            return async_handler(ctx, message)

        assert CommandEntry("a", wrapper).is_async
        assert EventEntry(UpdateKind.MESSAGE, functools.partial(wrapper)).is_async

    def test_entries_are_frozen(self) -> None:
        entry = CommandEntry("ping", async_handler)
        with pytest.raises(AttributeError):
            entry.command = "pong"  # type: ignore[misc]


# ── Registry construction ────────────────────────────────────────────────────


class TestRegistryConstruction:
    def test_duplicate_command_rejected(self) -> None:
        with pytest.raises(DuplicateHandlerError) as exc_info:
            HandlerRegistry(commands=[CommandEntry("ping", async_handler), CommandEntry("/ping", sync_handler)])
        assert exc_info.value.key == "/ping"

    def test_duplicate_event_rejected(self) -> None:
        with pytest.raises(DuplicateHandlerError):
            HandlerRegistry(events=[
                EventEntry(UpdateKind.CALLBACK_QUERY, async_handler),
                EventEntry(UpdateKind.CALLBACK_QUERY, sync_handler),
            ])

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            HandlerRegistry(events=[EventEntry(UpdateKind.UNKNOWN, async_handler)])

    def test_registry_is_immutable(self) -> None:
        registry = HandlerRegistry(commands=[CommandEntry("ping", async_handler)])
        with pytest.raises(AttributeError):
            registry._commands = {}
        with pytest.raises(TypeError):
            registry.commands["pong"] = CommandEntry("pong", async_handler)  # type: ignore[index]
        assert len(registry) == 1


# ── Lookup ───────────────────────────────────────────────────────────────────


class TestLookup:
    @pytest.fixture()
    def registry(self) -> HandlerRegistry:
        return HandlerRegistry(
            commands=[
                CommandEntry("ping", async_handler, "Ping", max_args=0),
                CommandEntry("echo", sync_handler, "Echo", min_args=1),
            ],
            events=[
                EventEntry(UpdateKind.MESSAGE, async_handler),
                EventEntry(UpdateKind.CALLBACK_QUERY, sync_handler),
            ],
        )

    def test_known_command(self, registry: HandlerRegistry) -> None:
        entry = registry.lookup(_message_with("ping"))
        assert isinstance(entry, CommandEntry)
        assert entry.command == "ping"

    def test_unknown_command_falls_back_to_event(self, registry: HandlerRegistry) -> None:
        entry = registry.lookup(_message_with("nope"))
        assert isinstance(entry, EventEntry)
        assert entry.kind is UpdateKind.MESSAGE

    def test_arg_mismatch_falls_back_to_event(self, registry: HandlerRegistry) -> None:
        entry = registry.lookup(_message_with("echo"))
        assert isinstance(entry, EventEntry)

    def test_event_kind(self, registry: HandlerRegistry) -> None:
        entry = registry.lookup(Classification(UpdateKind.CALLBACK_QUERY))
        assert entry is registry.events[UpdateKind.CALLBACK_QUERY]

    def test_no_match(self) -> None:
        registry = HandlerRegistry(commands=[CommandEntry("ping", async_handler)])
        assert registry.lookup(Classification(UpdateKind.POLL)) is None
        assert registry.lookup(_message_with("pong")) is None

    def test_get_accepts_slash(self, registry: HandlerRegistry) -> None:
        assert registry.get("/echo") is registry.get("echo")
        assert registry.get("/missing") is None

    def test_bot_commands(self, registry: HandlerRegistry) -> None:
        assert registry.bot_commands() == [
            BotCommand(command="ping", description="Ping"),
            BotCommand(command="echo", description="Echo"),
        ]


# ── Builder ──────────────────────────────────────────────────────────────────


class TestRegistryBuilder:
    def test_decorators_collect_and_return_function(self) -> None:
        builder = RegistryBuilder()

        @builder.command("/hello", description="Greet", max_args=1)
        async def hello(ctx, message) -> None:
            return None

        @builder.on("callback_query")
        def on_callback(ctx, update) -> None:
            return None

        registry = builder.build()
        assert registry.get("hello").handler is hello
        assert registry.get("hello").max_args == 1
        assert registry.events[UpdateKind.CALLBACK_QUERY].handler is on_callback

    def test_duplicates_detected_at_build(self) -> None:
        builder = RegistryBuilder()
        builder.command("/a")(async_handler)
        builder.command("a")(sync_handler)
        with pytest.raises(DuplicateHandlerError):
            builder.build()
