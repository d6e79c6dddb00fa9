"""Push listener: an inbound HTTP endpoint for platform-initiated delivery.

The ASGI app (FastAPI) accepts ``POST`` requests on a single path, checks the
optional shared secret, decodes the body into one :class:`~sdk.models.Update`
and hands it to the dispatcher.  The request is answered as soon as the
update has been handed over; handlers run detached from the response.

Responses:

* ``200`` update accepted (or an internal decode error, logged)
* ``400`` body is not a JSON update object
* ``403`` shared secret missing or wrong
* ``503`` listener is shutting down
* ``404`` / ``405`` from routing, for other paths and methods
"""

from __future__ import annotations

import asyncio
import hmac
import json
import socket
from typing import Any, Callable, Optional, Sequence

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from core.logger import RelayLogger
from engine.exceptions import FatalSourceError
from engine.settings import WebhookOptions
from sdk.exceptions import APIException, NetworkError
from sdk.models import Update

logger = RelayLogger.get_logger()

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

Dispatch = Callable[[Update], object]


def _reply(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": status_code == 200, "detail": detail})


def _secret_matches(provided: Optional[str], expected: str) -> bool:
    if provided is None:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def build_webhook_app(
    path: str,
    dispatch: Dispatch,
    secret_token: Optional[str] = None,
    is_accepting: Callable[[], bool] = lambda: True,
) -> FastAPI:
    """Return the ASGI app that feeds pushed updates into *dispatch*."""
    app = FastAPI(title="tgrelay push listener", docs_url=None, redoc_url=None, openapi_url=None)

    @app.post(path)
    async def receive_update(request: Request) -> JSONResponse:
        if not is_accepting():
            return _reply(503, "shutting down")

        if secret_token is not None and not _secret_matches(request.headers.get(SECRET_HEADER), secret_token):
            logger.warning("Rejected push with bad secret token", extra={"client": getattr(request.client, "host", None)})
            return _reply(403, "forbidden")

        body = await request.body()
        try:
            raw: Any = json.loads(body)
        except ValueError:
            logger.warning("Rejected push with unparseable body", extra={"body_size": len(body)})
            return _reply(400, "body is not valid JSON")

        update_id = raw.get("update_id") if isinstance(raw, dict) else None
        if not isinstance(update_id, int) or isinstance(update_id, bool):
            logger.warning("Rejected push without an update_id")
            return _reply(400, "not an update object")

        try:
            update = Update.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Rejected malformed update", extra={"update_id": update_id, "error": str(exc)})
            return _reply(400, "malformed update")
        except Exception:
            # Acknowledged anyway: the platform would only redeliver the same body.
            logger.exception("Internal error while decoding update", extra={"update_id": update_id})
            return _reply(200, "accepted")

        try:
            dispatch(update)
        except Exception:
            logger.exception("Dispatch failed", extra={"update_id": update_id})
        return _reply(200, "accepted")

    return app


class WebhookListener:
    """Runs :func:`build_webhook_app` under uvicorn until stopped.

    When ``options.public_url`` is set the URL is registered via ``setWebhook``
    first; a rejection there is fatal for the run.
    """

    def __init__(
        self,
        options: WebhookOptions,
        api: Any = None,
        allowed_updates: Optional[Sequence[str]] = None,
    ) -> None:
        self._options = options
        self._api = api
        self._allowed_updates = list(allowed_updates) if allowed_updates is not None else None
        self._socket: Optional[socket.socket] = None
        self._serving = False

    @property
    def bound_port(self) -> Optional[int]:
        """The actual listening port (useful with ``port=0``), once bound."""
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    async def _register(self) -> None:
        opts = self._options
        if self._api is None:
            raise FatalSourceError("A public webhook URL needs an API handle to register it")
        try:
            await self._api.set_webhook(
                opts.public_url,
                secret_token=opts.secret_token,
                allowed_updates=self._allowed_updates,
                drop_pending_updates=opts.drop_pending_updates or None,
            )
        except (APIException, NetworkError) as exc:
            logger.error("setWebhook failed", extra={"url": opts.public_url, "error": str(exc)})
            raise FatalSourceError(f"setWebhook failed: {exc}") from exc
        logger.info("Webhook registered", extra={"url": opts.public_url})

    def _bind(self) -> socket.socket:
        opts = self._options
        family = socket.AF_INET6 if ":" in opts.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((opts.host, opts.port))
        except OSError as exc:
            sock.close()
            raise FatalSourceError(f"Cannot bind {opts.host}:{opts.port}: {exc}") from exc
        sock.set_inheritable(True)
        return sock

    async def run(self, dispatch: Dispatch, stop: asyncio.Event) -> None:
        """Serve until *stop* is set.

        Raises :class:`FatalSourceError` if registration, binding or the
        server itself fails.
        """
        if self._options.public_url:
            await self._register()

        self._socket = self._bind()
        app = build_webhook_app(
            self._options.path,
            dispatch,
            secret_token=self._options.secret_token,
            is_accepting=lambda: self._serving and not stop.is_set(),
        )
        server = uvicorn.Server(uvicorn.Config(app, log_config=None, lifespan="off", access_log=False))

        self._serving = True
        serve_task = asyncio.create_task(server.serve(sockets=[self._socket]), name="webhook-server")
        stop_task = asyncio.create_task(stop.wait(), name="webhook-stop")
        logger.info(
            "Push listener started",
            extra={"host": self._options.host, "port": self.bound_port, "path": self._options.path},
        )
        try:
            await asyncio.wait({serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            self._serving = False
            server.should_exit = True
            try:
                await serve_task
            except asyncio.CancelledError:
                raise
            except (Exception, SystemExit) as exc:
                logger.error("Push listener crashed", exc_info=True)
                raise FatalSourceError(f"Push listener failed: {exc}") from exc
        finally:
            self._serving = False
            stop_task.cancel()
            if not serve_task.done():
                server.should_exit = True
                serve_task.cancel()
            self._socket.close()
            self._socket = None
        logger.info("Push listener stopped")
