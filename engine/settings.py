"""Immutable run settings for :class:`engine.controller.BotController`.

Built by :func:`config.load_settings` from the environment, or directly by
application code.  :meth:`Settings.validate` is called on ``start`` so an
invalid combination is rejected before anything is fetched or bound.
"""

from __future__ import annotations

import dataclasses
from typing import Optional

from engine.exceptions import ConfigurationError, SourceConflictError

MAX_POLL_LIMIT = 100


@dataclasses.dataclass(frozen=True)
class PollingOptions:
    """Long-polling source options."""

    limit: int = 100              # updates per fetch, 1..100
    timeout: int = 30             # server-side long-poll wait, seconds
    retry_delay: float = 1.0      # first backoff after a transient failure
    max_retry_delay: float = 30.0
    initial_offset: Optional[int] = None


@dataclasses.dataclass(frozen=True)
class WebhookOptions:
    """Push listener options.

    ``public_url``, when set, is registered with the platform via
    ``setWebhook`` before the listener starts accepting requests.
    """

    host: str = "127.0.0.1"
    port: int = 8006
    path: str = "/"
    secret_token: Optional[str] = None
    public_url: Optional[str] = None
    drop_pending_updates: bool = False


@dataclasses.dataclass(frozen=True)
class Settings:
    """Everything a single run needs besides the API handle and the registry."""

    polling: Optional[PollingOptions] = None
    webhook: Optional[WebhookOptions] = None
    bot_name: Optional[str] = None
    shutdown_grace: float = 10.0
    allowed_updates: Optional[tuple[str, ...]] = None
    publish_commands: bool = False

    @property
    def source(self) -> str:
        """``"webhook"`` when a push listener is configured, else ``"polling"``."""
        return "webhook" if self.webhook is not None else "polling"

    @property
    def polling_options(self) -> PollingOptions:
        return self.polling if self.polling is not None else PollingOptions()

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` for any invalid combination."""
        if self.polling is not None and self.webhook is not None:
            raise SourceConflictError("Configure either polling or a push listener, not both")
        if self.shutdown_grace < 0:
            raise ConfigurationError("shutdown_grace must be >= 0")
        if self.bot_name is not None and (not self.bot_name or "@" in self.bot_name):
            raise ConfigurationError("bot_name must be a bare, non-empty username")

        if self.webhook is not None:
            hook = self.webhook
            if not hook.path.startswith("/"):
                raise ConfigurationError(f"Webhook path must start with '/': {hook.path!r}")
            if not 0 <= hook.port <= 65535:
                raise ConfigurationError(f"Webhook port out of range: {hook.port}")
            return

        poll = self.polling_options
        if not 1 <= poll.limit <= MAX_POLL_LIMIT:
            raise ConfigurationError(f"Polling limit must be within 1..{MAX_POLL_LIMIT}, got {poll.limit}")
        if poll.timeout < 0:
            raise ConfigurationError("Polling timeout must be >= 0")
        if poll.retry_delay <= 0 or poll.max_retry_delay < poll.retry_delay:
            raise ConfigurationError("Retry delays must satisfy 0 < retry_delay <= max_retry_delay")
