"""Slash-command recognition.

A message is a command candidate when its text starts with a
``bot_command`` entity (or, when the platform sent no entities, with a
``/`` token).  ``/name@bot`` forms are accepted only when the suffix matches
the configured bot name exactly; without a configured name the suffix is
ignored.  Whether the candidate names a *known* command is decided by the
registry, not here.
"""

from __future__ import annotations

import dataclasses
from typing import Optional

from sdk.models import Message


@dataclasses.dataclass(frozen=True, slots=True)
class CommandInvocation:
    """A parsed ``/name[@bot] arg1 arg2 …`` message."""

    name: str                     # without the leading slash, e.g. "ping"
    args: tuple[str, ...] = ()
    addressed_to: Optional[str] = None
    raw: str = ""                 # the full message text


def _leading_token(message: Message) -> Optional[str]:
    text = message.text
    if not text:
        return None
    if message.entities:
        for entity in message.entities:
            if entity.type == "bot_command" and entity.offset == 0:
                return text[:entity.length]
        return None
    if not text.startswith("/"):
        return None
    return text.split(maxsplit=1)[0]


def parse_command(message: Message, bot_name: Optional[str] = None) -> Optional[CommandInvocation]:
    """Return the command invocation carried by *message*, or ``None``."""
    token = _leading_token(message)
    if token is None or not token.startswith("/"):
        return None

    name, _, target = token[1:].partition("@")
    if not name:
        return None
    if target and bot_name is not None and target != bot_name:
        # Addressed to another bot in the same group.
        return None

    remainder = message.text[len(token):]  # type: ignore[index]
    return CommandInvocation(
        name=name,
        args=tuple(remainder.split()),
        addressed_to=target or None,
        raw=message.text or "",
    )
