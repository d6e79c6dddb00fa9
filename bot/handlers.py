"""Command handlers for the tgrelay reference bot.

Each public function handles a single slash-command and is registered on the
module-level :data:`commands` builder.  Handlers receive the per-update
:class:`~engine.context.Context` and the command's message; replies go
through ``ctx.api``.
"""

import dataclasses
import types
from typing import Mapping, Optional

from core.logger import RelayLogger
from engine.context import Context
from engine.dispatcher import DispatchStats
from engine.registry import HandlerRegistry, RegistryBuilder
from sdk.models import InlineKeyboardButton, InlineKeyboardMarkup, Message, Update, UpdateKind

logger = RelayLogger.get_logger()

commands = RegistryBuilder()


# ── Shared usage counter (lives in the extension store) ──────────────────────


@dataclasses.dataclass(frozen=True)
class UsageCounter:
    """How often each command was used during this run."""

    total: int = 0
    per_command: Mapping[str, int] = dataclasses.field(default_factory=lambda: types.MappingProxyType({}))

    def bump(self, command: str) -> "UsageCounter":
        counts = dict(self.per_command)
        counts[command] = counts.get(command, 0) + 1
        return UsageCounter(total=self.total + 1, per_command=types.MappingProxyType(counts))


def _count(ctx: Context, command: str) -> UsageCounter:
    return ctx.data.update(UsageCounter, lambda current: (current or UsageCounter()).bump(command))


def _display_name(message: Message) -> str:
    user = message.from_field
    if user is not None:
        return user.first_name
    return message.chat.title or str(message.chat.id)


# ── Command handlers ─────────────────────────────────────────────────────────


@commands.command("/start", description="Say hello")
async def handle_start(ctx: Context, message: Message) -> None:
    """Handle /start — greet the user and offer the /help button."""
    chat_id = message.chat.id
    _count(ctx, "/start")
    logger.info("User invoked /start", extra={"chat_id": chat_id, "command": "/start"})

    markup = InlineKeyboardMarkup(inline_keyboard=[[InlineKeyboardButton(text="📖 Help", callback_data="/help")]])
    await ctx.api.send_message(
        chat_id,
        f"👋 Hello, {_display_name(message)}! Send /help to see what I can do.",
        reply_markup=markup,
    )


@commands.command("/help", description="List available commands")
async def handle_help(ctx: Context, message: Message) -> None:
    """Handle /help — list every registered command with its description."""
    chat_id = message.chat.id
    _count(ctx, "/help")
    logger.info("User invoked /help", extra={"chat_id": chat_id, "command": "/help"})

    registry: Optional[HandlerRegistry] = ctx.data.get(HandlerRegistry)
    if registry is None or not registry.commands:
        await ctx.api.send_message(chat_id, "No commands are available.")
        return

    lines = [f"{entry.name} — {entry.description or entry.command}" for entry in registry.commands.values()]
    await ctx.api.send_message(chat_id, "📖 Available commands:\n" + "\n".join(lines))


@commands.command("/ping", description="Check that the bot is alive", max_args=0)
async def handle_ping(ctx: Context, message: Message) -> None:
    _count(ctx, "/ping")
    logger.info("User invoked /ping", extra={"chat_id": message.chat.id, "command": "/ping"})
    await ctx.api.send_message(message.chat.id, "🏓 pong", reply_to_message_id=message.message_id)


@commands.command("/echo", description="Repeat your text back", min_args=1)
async def handle_echo(ctx: Context, message: Message) -> None:
    """Handle /echo <text…> — reply with the arguments joined by spaces."""
    _count(ctx, "/echo")
    text = " ".join(ctx.args)
    logger.info("User invoked /echo", extra={"chat_id": message.chat.id, "command": "/echo", "arg_count": len(ctx.args)})
    await ctx.api.send_message(message.chat.id, text)


@commands.command("/stats", description="Show usage counters")
async def handle_stats(ctx: Context, message: Message) -> None:
    """Handle /stats — report command usage and dispatcher counters."""
    chat_id = message.chat.id
    usage = _count(ctx, "/stats")
    logger.info("User invoked /stats", extra={"chat_id": chat_id, "command": "/stats"})

    lines = [f"📊 Commands used: {usage.total}"]
    for name, count in sorted(usage.per_command.items()):
        lines.append(f"• {name}: {count}")

    stats: Optional[DispatchStats] = ctx.data.get(DispatchStats)
    if stats is not None:
        lines.append(
            f"Dispatched {stats.dispatched}, handled {stats.handled}, "
            f"failed {stats.failed}, unhandled {stats.unhandled}"
        )
    await ctx.api.send_message(chat_id, "\n".join(lines))


# ── Non-command events ───────────────────────────────────────────────────────


@commands.on(UpdateKind.EDITED_MESSAGE)
def handle_edited_message(ctx: Context, update: Update) -> None:
    """Log message edits (plain function, so it runs on a worker thread)."""
    message = update.edited_message
    if message is None:
        return
    ctx.data.update(UsageCounter, lambda current: (current or UsageCounter()).bump("edited_message"))
    logger.info(
        "Message edited",
        extra={"update_id": update.update_id, "chat_id": message.chat.id, "message_id": message.message_id},
    )
