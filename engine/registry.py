"""Immutable handler registry — the single source of truth for update → handler routing.

Design:
- ``CommandHandler`` and ``EventHandler`` are :class:`Protocol` classes
  describing the two handler shapes: command handlers receive the
  :class:`~sdk.models.Message`, event handlers the whole
  :class:`~sdk.models.Update`.  Either may be a coroutine function or a
  plain callable (plain callables run on a worker thread).
- ``CommandEntry`` / ``EventEntry`` are frozen metadata records.
- ``HandlerRegistry`` is built once from those records and never changes, so
  concurrent dispatch tasks share it without locking.  Duplicate keys are a
  :class:`~engine.exceptions.DuplicateHandlerError` at construction time.
- ``RegistryBuilder`` offers ``@builder.command(...)`` / ``@builder.on(...)``
  decorators that only *collect* entries; ``build()`` produces the registry.
"""

from __future__ import annotations

import dataclasses
import functools
import inspect
import types
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

from engine.commands import CommandInvocation
from engine.exceptions import ConfigurationError, DuplicateHandlerError
from sdk.models import BotCommand, Message, Update, UpdateKind

if TYPE_CHECKING:
    from engine.context import Context

# ── Handler protocols ────────────────────────────────────────────────────────

@runtime_checkable
class CommandHandler(Protocol):
    """Handler invoked with the context and the command's message."""
    def __call__(self, ctx: "Context", message: Message) -> Union[Awaitable[None], None]: ...  # noqa: E704


@runtime_checkable
class EventHandler(Protocol):
    """Handler invoked with the context and the whole update."""
    def __call__(self, ctx: "Context", update: Update) -> Union[Awaitable[None], None]: ...  # noqa: E704


def _is_async_callable(func: Any) -> bool:
    func = inspect.unwrap(func)
    while isinstance(func, functools.partial):
        func = inspect.unwrap(func.func)
    if inspect.iscoroutinefunction(func):
        return True
    call = getattr(func, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


def _normalise_command(command: str) -> str:
    name = command[1:] if command.startswith("/") else command
    if not name or any(ch.isspace() for ch in name) or "@" in name or "/" in name:
        raise ConfigurationError(f"Invalid command name: {command!r}")
    return name


# ── Registry entries ─────────────────────────────────────────────────────────

@dataclasses.dataclass(frozen=True, slots=True)
class CommandEntry:
    """Metadata for a single registered slash-command."""
    command: str              # e.g. "ping" (a leading "/" is stripped)
    handler: CommandHandler
    description: str = ""     # published via setMyCommands and shown in /help
    min_args: int = 0
    max_args: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "command", _normalise_command(self.command))
        if self.min_args < 0 or (self.max_args is not None and self.max_args < self.min_args):
            raise ConfigurationError(f"Invalid argument bounds for /{self.command}")

    @property
    def is_async(self) -> bool:
        return _is_async_callable(self.handler)

    @property
    def name(self) -> str:
        return f"/{self.command}"

    def accepts(self, args: tuple[str, ...]) -> bool:
        """True when *args* satisfies this command's argument-count bounds."""
        if len(args) < self.min_args:
            return False
        return self.max_args is None or len(args) <= self.max_args


@dataclasses.dataclass(frozen=True, slots=True)
class EventEntry:
    """A handler for every update of one :class:`UpdateKind`."""
    kind: UpdateKind
    handler: EventHandler

    @property
    def is_async(self) -> bool:
        return _is_async_callable(self.handler)

    @property
    def name(self) -> str:
        return self.kind.value


Entry = Union[CommandEntry, EventEntry]


@dataclasses.dataclass(frozen=True, slots=True)
class Classification:
    """What the dispatcher determined an update to be."""
    kind: UpdateKind
    command: Optional[CommandInvocation] = None


# ── Immutable registry ───────────────────────────────────────────────────────

class HandlerRegistry:
    """Read-only mapping from command names and update kinds to handlers.

    Usage::

        registry = HandlerRegistry(
            commands=[CommandEntry("ping", handle_ping, "Ping")],
            events=[EventEntry(UpdateKind.CALLBACK_QUERY, handle_callback)],
        )
        entry = registry.lookup(Classification(UpdateKind.MESSAGE, invocation))
    """

    __slots__ = ("_commands", "_events")

    def __init__(
        self,
        commands: Iterable[CommandEntry] = (),
        events: Iterable[EventEntry] = (),
    ) -> None:
        command_map: dict[str, CommandEntry] = {}
        for entry in commands:
            if entry.command in command_map:
                raise DuplicateHandlerError(entry.name)
            command_map[entry.command] = entry

        event_map: dict[UpdateKind, EventEntry] = {}
        for event in events:
            if event.kind is UpdateKind.UNKNOWN:
                raise ConfigurationError("Cannot register a handler for unknown updates")
            if event.kind in event_map:
                raise DuplicateHandlerError(event.kind.value)
            event_map[event.kind] = event

        self._commands: Mapping[str, CommandEntry] = types.MappingProxyType(command_map)
        self._events: Mapping[UpdateKind, EventEntry] = types.MappingProxyType(event_map)

    def __setattr__(self, name: str, value: Any) -> None:
        if hasattr(self, "_events"):
            raise AttributeError("HandlerRegistry is immutable")
        object.__setattr__(self, name, value)

    # ── lookup helpers ───────────────────────────────────────────────────

    def lookup(self, classification: Classification) -> Optional[Entry]:
        """Return the single handler entry for *classification*, or ``None``.

        A known command whose argument bounds are satisfied wins; otherwise
        the update falls back to the handler registered for its kind.
        """
        invocation = classification.command
        if invocation is not None:
            entry = self._commands.get(invocation.name)
            if entry is not None and entry.accepts(invocation.args):
                return entry
        return self._events.get(classification.kind)

    def get(self, command: str) -> Optional[CommandEntry]:
        """Return the entry for *command* (with or without ``/``), or ``None``."""
        return self._commands.get(command.lstrip("/"))

    @property
    def commands(self) -> Mapping[str, CommandEntry]:
        return self._commands

    @property
    def events(self) -> Mapping[UpdateKind, EventEntry]:
        return self._events

    def bot_commands(self) -> list[BotCommand]:
        """Command list in the shape ``setMyCommands`` expects."""
        return [
            BotCommand(command=entry.command, description=entry.description or entry.command)
            for entry in self._commands.values()
        ]

    def __len__(self) -> int:
        return len(self._commands) + len(self._events)

    def __repr__(self) -> str:
        return f"HandlerRegistry(commands={sorted(self._commands)}, events={[k.value for k in self._events]})"


# ── Declarative builder ──────────────────────────────────────────────────────

class RegistryBuilder:
    """Collects registrations made with decorators, then builds the registry.

    Example::

        commands = RegistryBuilder()

        @commands.command("/echo", description="Repeat text", min_args=1)
        async def handle_echo(ctx, message): ...

        @commands.on(UpdateKind.CALLBACK_QUERY)
        async def handle_callback(ctx, update): ...

        registry = commands.build()
    """

    def __init__(self) -> None:
        self._commands: list[CommandEntry] = []
        self._events: list[EventEntry] = []

    def command(
        self,
        command: str,
        *,
        description: str = "",
        min_args: int = 0,
        max_args: Optional[int] = None,
    ) -> Callable[[CommandHandler], CommandHandler]:
        """Decorator that registers *handler* for ``/command``."""
        def decorator(func: CommandHandler) -> CommandHandler:
            self._commands.append(CommandEntry(
                command=command,
                handler=func,
                description=description,
                min_args=min_args,
                max_args=max_args,
            ))
            return func
        return decorator

    def on(self, kind: Union[UpdateKind, str]) -> Callable[[EventHandler], EventHandler]:
        """Decorator that registers *handler* for every update of *kind*."""
        def decorator(func: EventHandler) -> EventHandler:
            self._events.append(EventEntry(kind=UpdateKind(kind), handler=func))
            return func
        return decorator

    def build(self) -> HandlerRegistry:
        """Return an immutable :class:`HandlerRegistry` of everything collected."""
        return HandlerRegistry(commands=self._commands, events=self._events)
