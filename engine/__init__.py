"""Update acquisition and dispatch engine.

Pulls updates (:class:`Poller`) or receives them (:class:`WebhookListener`),
routes each to one handler from an immutable :class:`HandlerRegistry`, and
runs handlers as independent tasks under a :class:`BotController`.

This package may import from ``core/`` and ``sdk/`` only, never from
``bot/``.
"""

from engine.commands import CommandInvocation, parse_command
from engine.context import Context
from engine.controller import BotController, LifecycleState, RunHandle, RunResult, StopReason
from engine.dispatcher import Dispatcher, DispatchOutcome, DispatchStats, OutcomeStatus
from engine.exceptions import (
    ConfigurationError,
    DuplicateHandlerError,
    FatalSourceError,
    SourceConflictError,
)
from engine.polling import Poller
from engine.registry import (
    Classification,
    CommandEntry,
    EventEntry,
    HandlerRegistry,
    RegistryBuilder,
)
from engine.settings import PollingOptions, Settings, WebhookOptions
from engine.webhook import WebhookListener, build_webhook_app

__all__ = [
    "BotController",
    "Classification",
    "CommandEntry",
    "CommandInvocation",
    "ConfigurationError",
    "Context",
    "DispatchOutcome",
    "DispatchStats",
    "Dispatcher",
    "DuplicateHandlerError",
    "EventEntry",
    "FatalSourceError",
    "HandlerRegistry",
    "LifecycleState",
    "OutcomeStatus",
    "Poller",
    "PollingOptions",
    "RegistryBuilder",
    "RunHandle",
    "RunResult",
    "Settings",
    "SourceConflictError",
    "StopReason",
    "WebhookListener",
    "WebhookOptions",
    "build_webhook_app",
    "parse_command",
]
