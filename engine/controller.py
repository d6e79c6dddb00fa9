"""Lifecycle controller: ``Idle -> Running -> Stopping -> Stopped``.

The controller validates :class:`~engine.settings.Settings`, builds the
shared :class:`~core.extensions.ExtensionStore` and the
:class:`~engine.dispatcher.Dispatcher`, then runs exactly one update source
(poller or push listener) under a supervisor task.

Shutdown, whether user-requested or caused by a fatal source failure:

1. the stop event is set, so the source issues no further fetch/accept;
2. the source is given until the grace deadline to return, then cancelled;
3. the dispatcher is closed and in-flight handlers are awaited until the
   same deadline; stragglers are counted and left running.

The terminal :class:`RunResult` tells a normal stop from a fatal one.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import functools
import signal
from typing import Any, Optional

from core.extensions import ExtensionStore
from core.logger import RelayLogger
from engine.dispatcher import Dispatcher
from engine.exceptions import FatalSourceError
from engine.polling import FetchUpdates, Poller
from engine.registry import HandlerRegistry
from engine.settings import Settings
from engine.webhook import WebhookListener

logger = RelayLogger.get_logger()


class LifecycleState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class StopReason(str, enum.Enum):
    STOPPED = "stopped"   # user-requested
    FATAL = "fatal"       # the update source failed


@dataclasses.dataclass(frozen=True)
class RunResult:
    """Terminal result of one run."""

    reason: StopReason
    error: Optional[BaseException] = None
    stragglers: int = 0

    @property
    def ok(self) -> bool:
        return self.reason is StopReason.STOPPED

    def raise_for_error(self) -> None:
        """Re-raise the fatal source error, if the run ended with one."""
        if self.error is not None:
            raise self.error


class RunHandle:
    """Handle to a started run, returned by :meth:`BotController.start`."""

    def __init__(self, controller: "BotController", task: asyncio.Task) -> None:
        self._controller = controller
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    def request_stop(self) -> None:
        self._controller.request_stop()

    async def stop(self) -> RunResult:
        """Request a graceful stop and wait for the run to finish."""
        self._controller.request_stop()
        return await self.wait()

    async def wait(self) -> RunResult:
        """Wait for the run to finish without requesting a stop."""
        return await asyncio.shield(self._task)


class BotController:
    """Owns one run of the engine.

    Usage::

        controller = BotController(api, registry)
        handle = await controller.start(Settings(polling=PollingOptions()))
        ...
        result = await handle.stop()

    ``fetch`` overrides the polling fetch capability (defaults to
    ``api.fetch_updates``); ``data`` supplies a pre-populated extension store.
    A controller is single-use.
    """

    def __init__(
        self,
        api: Any,
        registry: HandlerRegistry,
        *,
        data: Optional[ExtensionStore] = None,
        fetch: Optional[FetchUpdates] = None,
    ) -> None:
        self._api = api
        self._registry = registry
        self._data = data
        self._fetch = fetch
        self._state = LifecycleState.IDLE
        self._stop_event: Optional[asyncio.Event] = None
        self._dispatcher: Optional[Dispatcher] = None
        self._handle: Optional[RunHandle] = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def dispatcher(self) -> Optional[Dispatcher]:
        return self._dispatcher

    @property
    def data(self) -> Optional[ExtensionStore]:
        return self._data

    # ── start ────────────────────────────────────────────────────────────

    async def start(self, settings: Settings) -> RunHandle:
        """Validate *settings*, start the update source and return a handle.

        Raises :class:`~engine.exceptions.ConfigurationError` before anything
        is fetched or bound; the controller then stays ``IDLE``.
        """
        if self._state is not LifecycleState.IDLE:
            raise RuntimeError(f"Controller cannot start from state {self._state.value}")
        settings.validate()

        data = self._data if self._data is not None else ExtensionStore()
        data.insert(self._registry)
        data.insert(settings)
        self._data = data

        self._dispatcher = Dispatcher(self._registry, self._api, data, bot_name=settings.bot_name)
        data.insert(self._dispatcher.stats)

        if settings.publish_commands:
            await self._publish_commands()

        source = self._build_source(settings)
        self._stop_event = asyncio.Event()
        self._state = LifecycleState.RUNNING
        logger.info(
            "Controller running",
            extra={"source": settings.source, "handlers": len(self._registry), "bot_name": settings.bot_name},
        )
        task = asyncio.create_task(self._supervise(source, settings.shutdown_grace), name="tgrelay-supervisor")
        self._handle = RunHandle(self, task)
        return self._handle

    async def _publish_commands(self) -> None:
        commands = self._registry.bot_commands()
        try:
            await self._api.set_my_commands(commands)
        except Exception as exc:
            logger.warning("Publishing commands failed", extra={"error": str(exc), "api_endpoint": "setMyCommands"})
        else:
            logger.info("Commands published", extra={"count": len(commands)})

    def _build_source(self, settings: Settings) -> Any:
        if settings.webhook is not None:
            return WebhookListener(settings.webhook, api=self._api, allowed_updates=settings.allowed_updates)
        fetch = self._fetch
        if fetch is None:
            allowed = list(settings.allowed_updates) if settings.allowed_updates is not None else None
            fetch = functools.partial(self._api.fetch_updates, allowed_updates=allowed)
        return Poller.from_options(fetch, settings.polling_options)

    # ── stop ─────────────────────────────────────────────────────────────

    def request_stop(self) -> None:
        """Ask the running source to stop; returns immediately."""
        if self._state is not LifecycleState.RUNNING or self._stop_event is None:
            return
        if not self._stop_event.is_set():
            logger.info("Stop requested")
            self._stop_event.set()

    async def stop(self) -> RunResult:
        if self._handle is None:
            raise RuntimeError("Controller was never started")
        return await self._handle.stop()

    async def wait(self) -> RunResult:
        if self._handle is None:
            raise RuntimeError("Controller was never started")
        return await self._handle.wait()

    # ── supervision ──────────────────────────────────────────────────────

    async def _supervise(self, source: Any, grace: float) -> RunResult:
        assert self._stop_event is not None and self._dispatcher is not None
        stop_event = self._stop_event
        dispatcher = self._dispatcher
        loop = asyncio.get_running_loop()

        source_task = asyncio.create_task(source.run(dispatcher.dispatch, stop_event), name="tgrelay-source")
        stop_waiter = asyncio.create_task(stop_event.wait(), name="tgrelay-stop")
        error: Optional[BaseException] = None
        try:
            await asyncio.wait({source_task, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
            self._state = LifecycleState.STOPPING
            stop_event.set()
            deadline = loop.time() + grace

            if not source_task.done():
                try:
                    await asyncio.wait_for(asyncio.shield(source_task), timeout=grace)
                except asyncio.TimeoutError:
                    logger.warning("Update source did not stop within grace period, cancelling it")
                    source_task.cancel()
                    await asyncio.gather(source_task, return_exceptions=True)
                except Exception:
                    pass  # read from the task below

            if not source_task.cancelled() and source_task.exception() is not None:
                error = source_task.exception()
                if not isinstance(error, FatalSourceError):
                    wrapped = FatalSourceError(f"Update source crashed: {error}")
                    wrapped.__cause__ = error
                    error = wrapped
                logger.error("Update source failed", extra={"error": str(error)})

            dispatcher.close()
            stragglers = await dispatcher.drain(max(0.0, deadline - loop.time()))
        finally:
            stop_waiter.cancel()
            self._state = LifecycleState.STOPPED

        stats = dataclasses.asdict(dispatcher.stats)
        if error is not None:
            logger.error("Controller stopped after fatal source error", extra={"stragglers": stragglers, **stats})
            return RunResult(StopReason.FATAL, error=error, stragglers=stragglers)
        logger.info("Controller stopped", extra={"stragglers": stragglers, **stats})
        return RunResult(StopReason.STOPPED, stragglers=stragglers)

    # ── convenience entry point ──────────────────────────────────────────

    async def run(self, settings: Settings) -> RunResult:
        """Start, stop on SIGINT/SIGTERM, and return the terminal result."""
        handle = await self.start(settings)
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handlers unavailable on this platform", extra={"signal": sig.name})
            else:
                installed.append(sig)
        try:
            return await handle.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
