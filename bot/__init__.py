"""tgrelay reference bot — command handlers and the callback-query handler.

This package may import from ``core/``, ``engine/`` and ``sdk/`` only.
"""

from bot.handlers import (
    UsageCounter,
    commands,
    handle_echo,
    handle_edited_message,
    handle_help,
    handle_ping,
    handle_start,
    handle_stats,
)
from bot.callbacks import handle_callback_query
from engine.registry import HandlerRegistry


def build_registry() -> HandlerRegistry:
    """Return the immutable registry holding every handler of this bot."""
    return commands.build()


__all__ = [
    "build_registry",
    "UsageCounter",
    # Command handlers
    "handle_start",
    "handle_help",
    "handle_ping",
    "handle_echo",
    "handle_stats",
    # Event handlers
    "handle_edited_message",
    "handle_callback_query",
]
