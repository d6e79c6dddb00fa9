"""Long-polling update source.

Repeatedly asks the platform for updates newer than the current offset and
hands each one to the dispatcher.  The offset only moves forward: after a
non-empty batch it becomes ``max(update_id) + 1``, which acknowledges the
whole batch on the next request.

Transient failures (network errors, rate limiting, 5xx) are retried with
exponential backoff; any other failure ends the loop with
:class:`~engine.exceptions.FatalSourceError`.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, Protocol

from core.logger import RelayLogger
from engine.exceptions import FatalSourceError
from engine.settings import PollingOptions
from sdk.exceptions import APIException, NetworkError
from sdk.models import Update

logger = RelayLogger.get_logger()

Dispatch = Callable[[Update], object]


class FetchUpdates(Protocol):
    """Anything that can fetch a batch of updates (normally ``BotAPI.fetch_updates``)."""
    def __call__(self, offset: Optional[int], limit: int, timeout: int) -> Awaitable[List[Update]]: ...  # noqa: E704


def _retry_after(exc: BaseException) -> Optional[float]:
    """Return the backoff for a transient failure, or ``None`` if *exc* is fatal."""
    if isinstance(exc, APIException):
        if not exc.is_transient:
            return None
        return float(exc.retry_after) if exc.retry_after is not None else 0.0
    if isinstance(exc, (NetworkError, TimeoutError, ConnectionError)):
        return 0.0
    return None


class Poller:
    """Pull-based update source.

    Usage::

        poller = Poller(api.fetch_updates, limit=100, timeout=30)
        await poller.run(dispatcher.dispatch, stop_event)
    """

    def __init__(
        self,
        fetch: FetchUpdates,
        *,
        limit: int = 100,
        timeout: int = 30,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
        initial_offset: Optional[int] = None,
    ) -> None:
        self._fetch = fetch
        self._limit = limit
        self._timeout = timeout
        self._retry_delay = retry_delay
        self._max_retry_delay = max_retry_delay
        self._offset = initial_offset

    @classmethod
    def from_options(cls, fetch: FetchUpdates, options: PollingOptions) -> "Poller":
        return cls(
            fetch,
            limit=options.limit,
            timeout=options.timeout,
            retry_delay=options.retry_delay,
            max_retry_delay=options.max_retry_delay,
            initial_offset=options.initial_offset,
        )

    @property
    def offset(self) -> Optional[int]:
        """The next offset to request (``None`` until the first batch)."""
        return self._offset

    async def _sleep(self, delay: float, stop: asyncio.Event) -> None:
        """Sleep for *delay* seconds or until *stop* is set, whichever is first."""
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def run(self, dispatch: Dispatch, stop: asyncio.Event) -> None:
        """Poll until *stop* is set.

        Raises :class:`FatalSourceError` on a non-retryable fetch failure.
        """
        failures = 0
        logger.info("Polling started", extra={"offset": self._offset, "limit": self._limit, "timeout": self._timeout})

        while not stop.is_set():
            try:
                batch = await self._fetch(self._offset, self._limit, self._timeout)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                hint = _retry_after(exc)
                if hint is None:
                    logger.error("Fetching updates failed permanently", exc_info=True, extra={"offset": self._offset})
                    raise FatalSourceError(f"getUpdates failed: {exc}") from exc
                failures += 1
                delay = min(self._retry_delay * 2 ** (failures - 1), self._max_retry_delay)
                delay = max(delay, hint)
                logger.warning(
                    "Fetching updates failed, retrying",
                    extra={"error": str(exc), "attempt": failures, "retry_in": delay},
                )
                await self._sleep(delay, stop)
                continue

            failures = 0
            if not batch:
                continue

            fresh = sorted(
                (u for u in batch if self._offset is None or u.update_id >= self._offset),
                key=lambda u: u.update_id,
            )
            if not fresh:
                logger.debug("Batch contained only acknowledged updates", extra={"offset": self._offset})
                continue

            if stop.is_set():
                # Not acknowledged: the platform redelivers these on the next run.
                logger.info(
                    "Stop requested, leaving batch unacknowledged",
                    extra={"count": len(fresh), "first_update_id": fresh[0].update_id},
                )
                break

            self._offset = fresh[-1].update_id + 1
            logger.debug("Received updates", extra={"count": len(fresh), "next_offset": self._offset})

            for update in fresh:
                dispatch(update)

        logger.info("Polling stopped", extra={"offset": self._offset})
