"""Update dispatcher.

Classifies each incoming update (command vs. generic event), looks up the
single matching handler in the immutable :class:`HandlerRegistry` and spawns
it as an independent :func:`asyncio.create_task`; the caller (polling loop
or push listener) never waits for handlers.  Tasks are launched in the order
``dispatch`` is called; their completion order is not guaranteed.

Handler failures are logged and counted, never re-raised.  The set of
in-flight tasks is kept only so the controller can drain it on shutdown.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import inspect
from typing import Any, Optional

from core.extensions import ExtensionStore
from core.logger import RelayLogger
from engine.commands import parse_command
from engine.context import Context
from engine.registry import Classification, CommandEntry, Entry, HandlerRegistry
from sdk.models import Update, UpdateKind

logger = RelayLogger.get_logger()

# Only these kinds can carry a slash-command.
_COMMAND_KINDS = frozenset({UpdateKind.MESSAGE, UpdateKind.CHANNEL_POST})


class OutcomeStatus(str, enum.Enum):
    HANDLED = "handled"
    FAILED = "failed"
    UNHANDLED = "unhandled"


@dataclasses.dataclass(frozen=True)
class DispatchOutcome:
    """Result of one handler invocation, for logging and counters."""

    update_id: int
    status: OutcomeStatus
    handler: Optional[str] = None
    error: Optional[str] = None


@dataclasses.dataclass
class DispatchStats:
    """Counters updated on the event-loop thread only."""

    dispatched: int = 0
    handled: int = 0
    failed: int = 0
    unhandled: int = 0
    dropped: int = 0

    def record(self, outcome: DispatchOutcome) -> None:
        if outcome.status is OutcomeStatus.HANDLED:
            self.handled += 1
        elif outcome.status is OutcomeStatus.FAILED:
            self.failed += 1
        else:
            self.unhandled += 1


class Dispatcher:
    """Routes updates to handlers without blocking intake.

    Must be used from within a running event loop.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        api: Any,
        data: ExtensionStore,
        bot_name: Optional[str] = None,
    ) -> None:
        self._registry = registry
        self._api = api
        self._data = data
        self._bot_name = bot_name
        self._tasks: set[asyncio.Task] = set()
        self._accepting = True
        self.stats = DispatchStats()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def accepting(self) -> bool:
        return self._accepting

    def classify(self, update: Update) -> Classification:
        """Determine the update's kind and, for messages, its command invocation."""
        kind = update.kind
        command = None
        if kind in _COMMAND_KINDS:
            command = parse_command(update.payload, self._bot_name)
        return Classification(kind=kind, command=command)

    def dispatch(self, update: Update) -> Optional[asyncio.Task]:
        """Spawn the handler for *update* and return its task.

        Returns ``None`` (and has no side effect beyond logging) when the
        dispatcher is closed, the update is an undecodable placeholder, or
        no handler matches.
        """
        update_id = update.update_id
        if not self._accepting:
            logger.debug("Dispatcher closed, ignoring update", extra={"update_id": update_id})
            self.stats.dropped += 1
            return None
        if update.decode_error is not None:
            logger.warning("Dropping undecodable update", extra={"update_id": update_id, "error": update.decode_error})
            self.stats.dropped += 1
            return None

        classification = self.classify(update)
        entry = self._registry.lookup(classification)
        if entry is None:
            self.stats.unhandled += 1
            logger.debug(
                "No handler matched",
                extra={
                    "update_id": update_id,
                    "kind": classification.kind.value,
                    "command": classification.command.name if classification.command else None,
                },
            )
            return None

        invocation = classification.command if isinstance(entry, CommandEntry) else None
        ctx = Context(api=self._api, data=self._data, update=update, command=invocation)
        self.stats.dispatched += 1
        logger.debug("Dispatching update", extra={"update_id": update_id, "handler": entry.name})

        task = asyncio.create_task(self._invoke(entry, ctx), name=f"update-{update_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _invoke(self, entry: Entry, ctx: Context) -> DispatchOutcome:
        update_id = ctx.update.update_id
        argument = ctx.update.payload if isinstance(entry, CommandEntry) else ctx.update
        try:
            if entry.is_async:
                await entry.handler(ctx, argument)
            else:
                result = await asyncio.to_thread(entry.handler, ctx, argument)
                if inspect.isawaitable(result):
                    # A wrapper that hides a coroutine function still returns one.
                    await result
        except Exception as exc:
            outcome = DispatchOutcome(update_id, OutcomeStatus.FAILED, entry.name, f"{type(exc).__name__}: {exc}")
            logger.error(
                "Handler failed",
                exc_info=True,
                extra={"update_id": update_id, "handler": entry.name, "error": outcome.error},
            )
        else:
            outcome = DispatchOutcome(update_id, OutcomeStatus.HANDLED, entry.name)
            logger.info("Handler finished", extra={"update_id": update_id, "handler": entry.name})
        self.stats.record(outcome)
        return outcome

    def close(self) -> None:
        """Stop accepting new updates; in-flight handlers keep running."""
        self._accepting = False

    async def drain(self, timeout: Optional[float]) -> int:
        """Wait for in-flight handlers for at most *timeout* seconds.

        Returns the number of handlers still running afterwards.  Stragglers
        are left alone, not cancelled.
        """
        pending = set(self._tasks)
        if not pending:
            return 0
        logger.info("Waiting for in-flight handlers", extra={"in_flight": len(pending), "timeout": timeout})
        if timeout is not None and timeout <= 0:
            return len(pending)
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending:
            logger.warning("Handlers still running after grace period", extra={"stragglers": len(still_pending)})
        return len(still_pending)
