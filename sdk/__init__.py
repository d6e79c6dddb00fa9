"""Bot API SDK — Pydantic models, the sync service client, the async façade and exceptions.

The :class:`BotAPIClient` wraps the endpoints the update engine needs with
synchronous ``requests`` calls.  :class:`BotAPI` is the async façade handed
to handlers; its :meth:`BotAPI.fetch_updates` is the fetch capability the
poller consumes.

Usage::

    from sdk import BotAPI, APIException
    from sdk.models import Update, UpdateKind, Message

    api = BotAPI.from_token(token)
    updates = await api.fetch_updates(offset=None, limit=100, timeout=30)
"""

from sdk.api import BotAPI, decode_updates
from sdk.client import BotAPIClient, build_base_url
from sdk.exceptions import APIException, NetworkError

__all__ = [
    "BotAPI",
    "BotAPIClient",
    "APIException",
    "NetworkError",
    "build_base_url",
    "decode_updates",
]
