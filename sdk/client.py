"""BotAPIClient -- synchronous service layer for the Bot API endpoints the engine uses.

Each public method corresponds to one Bot API endpoint and returns the raw
JSON envelope (``{"ok": true, "result": ...}``).  HTTP calls use the
``requests`` library; the async façade in :mod:`sdk.api` offloads them to a
worker thread and validates results with Pydantic models.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import requests

from sdk.exceptions import APIException
from sdk.models import BotCommand, ReplyMarkup

_sdk_logger = logging.getLogger("tgrelay.sdk")

DEFAULT_API_URL = "https://api.telegram.org"


def build_base_url(token: str, api_url: str = DEFAULT_API_URL) -> str:
    """Return the per-bot base URL (``<api_url>/bot<token>``)."""
    return f"{api_url.rstrip('/')}/bot{token}"


class BotAPIClient:
    """Client-side service layer for the Bot API.

    The client is stateless apart from its configuration, so a single
    instance may be shared by any number of threads.
    """

    _DEFAULT_TIMEOUT: int = 10

    def __init__(self, base_url: str, timeout: int = _DEFAULT_TIMEOUT) -> None:
        """Create a new client bound to *base_url*.

        Args:
            base_url: Full Bot API base URL (e.g. ``https://api.telegram.org/bot<token>``).
            timeout: Default request timeout in seconds.
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    # ------------------------------------------------------------------
    #  Internal helpers
    # ------------------------------------------------------------------

    def _post(self, endpoint: str, payload: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Send a POST request and return the parsed JSON body.

        Raises:
            APIException: If the status code is not 2xx or the envelope says ``ok=false``.
            requests.RequestException: On transport-level failures.
        """
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        response = requests.post(url, json=payload, timeout=timeout or self._timeout)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not response.ok:
            raise APIException(response.status_code, body)
        if isinstance(body, dict) and body.get("ok") is False:
            raise APIException(body.get("error_code", response.status_code), body)
        return body

    # ------------------------------------------------------------------
    #  Getting updates
    # ------------------------------------------------------------------

    def get_updates(self, offset: Optional[int] = None, limit: Optional[int] = 100, timeout: Optional[int] = 0, allowed_updates: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        """Receive incoming updates using long polling.

        The HTTP timeout is extended by *timeout* so a long poll that simply
        waits the full period is not reported as a transport failure.
        """
        payload: Dict[str, Any] = {}
        if offset is not None:
            payload["offset"] = offset
        if limit is not None:
            payload["limit"] = limit
        if timeout is not None:
            payload["timeout"] = timeout
        if allowed_updates is not None:
            payload["allowed_updates"] = list(allowed_updates)
        _sdk_logger.debug("getUpdates", extra={"api_endpoint": "getUpdates", "offset": offset, "limit": limit})
        return self._post("getUpdates", payload, timeout=self._timeout + (timeout or 0))

    def set_webhook(self, url: str, secret_token: Optional[str] = None, ip_address: Optional[str] = None, max_connections: Optional[int] = None, allowed_updates: Optional[Sequence[str]] = None, drop_pending_updates: Optional[bool] = None) -> Dict[str, Any]:
        """Specify a URL and receive incoming updates via an outgoing webhook."""
        payload: Dict[str, Any] = {}
        payload["url"] = url
        if secret_token is not None:
            payload["secret_token"] = secret_token
        if ip_address is not None:
            payload["ip_address"] = ip_address
        if max_connections is not None:
            payload["max_connections"] = max_connections
        if allowed_updates is not None:
            payload["allowed_updates"] = list(allowed_updates)
        if drop_pending_updates is not None:
            payload["drop_pending_updates"] = drop_pending_updates
        return self._post("setWebhook", payload)

    def delete_webhook(self, drop_pending_updates: Optional[bool] = None) -> Dict[str, Any]:
        """Remove webhook integration to switch back to getUpdates."""
        payload: Dict[str, Any] = {}
        if drop_pending_updates is not None:
            payload["drop_pending_updates"] = drop_pending_updates
        return self._post("deleteWebhook", payload)

    def get_webhook_info(self) -> Dict[str, Any]:
        """Get current webhook status."""
        return self._post("getWebhookInfo")

    # ------------------------------------------------------------------
    #  Bot identity and commands
    # ------------------------------------------------------------------

    def get_me(self) -> Dict[str, Any]:
        """Test the bot's auth token. Returns basic information about the bot."""
        return self._post("getMe")

    def set_my_commands(self, commands: List[Union[BotCommand, Dict[str, str]]]) -> Dict[str, Any]:
        """Change the list of the bot's commands shown in clients' command menus."""
        payload: Dict[str, Any] = {
            "commands": [
                c.model_dump() if isinstance(c, BotCommand) else c for c in commands
            ],
        }
        return self._post("setMyCommands", payload)

    def get_my_commands(self) -> Dict[str, Any]:
        """Get the current list of the bot's commands."""
        return self._post("getMyCommands")

    # ------------------------------------------------------------------
    #  Responding
    # ------------------------------------------------------------------

    def send_message(self, chat_id: Union[int, str], text: str, parse_mode: Optional[str] = None, disable_notification: Optional[bool] = None, reply_to_message_id: Optional[int] = None, reply_markup: Optional[ReplyMarkup] = None) -> Dict[str, Any]:
        """Send a text message. On success, the sent Message is returned."""
        payload: Dict[str, Any] = {}
        payload["chat_id"] = chat_id
        payload["text"] = text
        if parse_mode is not None:
            payload["parse_mode"] = parse_mode
        if disable_notification is not None:
            payload["disable_notification"] = disable_notification
        if reply_to_message_id is not None:
            payload["reply_to_message_id"] = reply_to_message_id
        if reply_markup is not None:
            payload["reply_markup"] = (
                reply_markup if isinstance(reply_markup, dict)
                else reply_markup.model_dump(exclude_none=True)
            )
        return self._post("sendMessage", payload)

    def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None, show_alert: Optional[bool] = None, url: Optional[str] = None, cache_time: Optional[int] = None) -> Dict[str, Any]:
        """Send an answer to a callback query sent from an inline keyboard."""
        payload: Dict[str, Any] = {}
        payload["callback_query_id"] = callback_query_id
        if text is not None:
            payload["text"] = text
        if show_alert is not None:
            payload["show_alert"] = show_alert
        if url is not None:
            payload["url"] = url
        if cache_time is not None:
            payload["cache_time"] = cache_time
        return self._post("answerCallbackQuery", payload)
