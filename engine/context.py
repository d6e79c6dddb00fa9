"""Per-dispatch execution context handed to every handler."""

from __future__ import annotations

import dataclasses
from typing import Any, Optional

from core.extensions import ExtensionStore
from engine.commands import CommandInvocation
from sdk.models import Message, Update


@dataclasses.dataclass(frozen=True)
class Context:
    """A fresh bundle per dispatched update.

    ``api`` and ``data`` are shared references: the API handle must be safe
    for concurrent callers and the extension store is owned by the
    controller for the whole run.
    """

    api: Any
    data: ExtensionStore
    update: Update
    command: Optional[CommandInvocation] = None

    @property
    def args(self) -> tuple[str, ...]:
        """Arguments following the command name (empty for non-commands)."""
        return self.command.args if self.command is not None else ()

    @property
    def message(self) -> Optional[Message]:
        return self.update.any_message

    @property
    def chat_id(self) -> Optional[int]:
        message = self.message
        if message is None and self.update.callback_query is not None:
            message = self.update.callback_query.message
        return message.chat.id if message is not None else None
