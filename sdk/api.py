"""Async façade over :class:`sdk.client.BotAPIClient`.

Every call runs the blocking ``requests`` request inside
:func:`asyncio.to_thread`, so handlers and the polling loop never block the
event loop.  Results are unwrapped from the ``{"ok": …, "result": …}``
envelope and validated with Pydantic models.  Transport failures surface as
:class:`sdk.exceptions.NetworkError`; API rejections as
:class:`sdk.exceptions.APIException`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, List, Optional, Sequence, Union

import requests
from pydantic import ValidationError

from sdk.client import BotAPIClient, build_base_url
from sdk.exceptions import NetworkError
from sdk.models import BotCommand, Message, ReplyMarkup, Update, User, WebhookInfo

_sdk_logger = logging.getLogger("tgrelay.sdk")


def decode_updates(raw_items: Iterable[Any]) -> List[Update]:
    """Validate raw update dicts into :class:`Update` models.

    An item that fails validation but still carries an integer
    ``update_id`` becomes an :meth:`Update.undecodable` placeholder, so the
    caller can acknowledge it without dispatching it.  Items without a
    usable identifier are logged and dropped.
    """
    updates: List[Update] = []
    for raw in raw_items:
        try:
            updates.append(Update.model_validate(raw))
        except ValidationError as exc:
            update_id = raw.get("update_id") if isinstance(raw, dict) else None
            if isinstance(update_id, int) and not isinstance(update_id, bool):
                _sdk_logger.warning("Update failed validation", extra={"update_id": update_id, "error": str(exc)})
                updates.append(Update.undecodable(update_id, str(exc)))
            else:
                _sdk_logger.error("Dropping update without a usable update_id", extra={"error": str(exc)})
    return updates


class BotAPI:
    """Async API handle shared by the engine and every handler.

    Safe for concurrent use: each call is an independent ``requests`` call
    on a worker thread.
    """

    def __init__(self, client: BotAPIClient) -> None:
        self._client = client

    @classmethod
    def from_token(cls, token: str, api_url: str = "https://api.telegram.org", timeout: int = 10) -> "BotAPI":
        """Build a façade for *token* against *api_url*."""
        return cls(BotAPIClient(build_base_url(token, api_url), timeout=timeout))

    @property
    def client(self) -> BotAPIClient:
        return self._client

    async def _call(self, func: Callable[..., dict], *args: Any, **kwargs: Any) -> Any:
        """Run *func* on a worker thread and return the envelope's ``result``."""
        try:
            body = await asyncio.to_thread(func, *args, **kwargs)
        except requests.RequestException as exc:
            raise NetworkError(str(exc)) from exc
        return body.get("result") if isinstance(body, dict) else None

    # ── update acquisition ───────────────────────────────────────────────

    async def fetch_updates(
        self,
        offset: Optional[int],
        limit: int,
        timeout: int,
        allowed_updates: Optional[Sequence[str]] = None,
    ) -> List[Update]:
        """Long-poll for updates starting at *offset*.

        Blocks server-side up to *timeout* seconds and returns as soon as at
        least one update is available.
        """
        result = await self._call(
            self._client.get_updates,
            offset=offset,
            limit=limit,
            timeout=timeout,
            allowed_updates=allowed_updates,
        )
        return decode_updates(result or [])

    async def set_webhook(
        self,
        url: str,
        secret_token: Optional[str] = None,
        allowed_updates: Optional[Sequence[str]] = None,
        drop_pending_updates: Optional[bool] = None,
    ) -> bool:
        result = await self._call(
            self._client.set_webhook,
            url,
            secret_token=secret_token,
            allowed_updates=allowed_updates,
            drop_pending_updates=drop_pending_updates,
        )
        return bool(result)

    async def delete_webhook(self, drop_pending_updates: Optional[bool] = None) -> bool:
        return bool(await self._call(self._client.delete_webhook, drop_pending_updates=drop_pending_updates))

    async def get_webhook_info(self) -> WebhookInfo:
        return WebhookInfo.model_validate(await self._call(self._client.get_webhook_info))

    # ── identity and commands ────────────────────────────────────────────

    async def get_me(self) -> User:
        return User.model_validate(await self._call(self._client.get_me))

    async def set_my_commands(self, commands: List[BotCommand]) -> bool:
        return bool(await self._call(self._client.set_my_commands, commands))

    async def get_my_commands(self) -> List[BotCommand]:
        result = await self._call(self._client.get_my_commands)
        return [BotCommand.model_validate(item) for item in result or []]

    # ── responding ───────────────────────────────────────────────────────

    async def send_message(
        self,
        chat_id: Union[int, str],
        text: str,
        parse_mode: Optional[str] = None,
        reply_to_message_id: Optional[int] = None,
        reply_markup: Optional[ReplyMarkup] = None,
    ) -> Message:
        """Send a text message and return the sent :class:`Message`."""
        _sdk_logger.debug("Sending message", extra={"chat_id": chat_id, "api_endpoint": "sendMessage", "text_preview": text[:80]})
        result = await self._call(
            self._client.send_message,
            chat_id,
            text,
            parse_mode=parse_mode,
            reply_to_message_id=reply_to_message_id,
            reply_markup=reply_markup,
        )
        return Message.model_validate(result)

    async def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None, show_alert: Optional[bool] = None) -> bool:
        """Acknowledge a callback query so the spinner disappears for the user."""
        result = await self._call(
            self._client.answer_callback_query,
            callback_query_id,
            text=text,
            show_alert=show_alert,
        )
        return bool(result)
