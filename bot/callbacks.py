"""Callback-query handler for inline keyboard interactions.

Acknowledges every button press so the client's spinner disappears.  When a
user taps a command button (``callback_data`` starting with ``/``), the
matching command handler is invoked directly, as if the user had typed it.
"""

import asyncio

from core.logger import RelayLogger
from engine.commands import CommandInvocation
from engine.context import Context
from engine.registry import HandlerRegistry
from sdk.models import Update, UpdateKind

from bot.handlers import commands

logger = RelayLogger.get_logger()


@commands.on(UpdateKind.CALLBACK_QUERY)
async def handle_callback_query(ctx: Context, update: Update) -> None:
    """Dispatch callback queries from inline keyboard buttons."""
    callback_query = update.callback_query
    if callback_query is None:
        return
    cb_id = callback_query.id
    data = callback_query.data or ""
    user_id = callback_query.from_field.id
    logger.info("Callback query received", extra={"update_id": update.update_id, "user_id": user_id, "callback_data": data})

    message = callback_query.message
    if message is None:
        await ctx.api.answer_callback_query(cb_id, "❌ Could not process.")
        return

    # ── /help menu command buttons ───────────────────────────────────────
    if data.startswith("/"):
        registry = ctx.data.get(HandlerRegistry)
        entry = registry.get(data) if registry is not None else None
        await ctx.api.answer_callback_query(cb_id)
        if entry is None or not entry.accepts(()):
            logger.debug("Callback names no runnable command", extra={"callback_data": data})
            return
        invocation = CommandInvocation(name=entry.command, raw=data)
        command_ctx = Context(api=ctx.api, data=ctx.data, update=ctx.update, command=invocation)
        if entry.is_async:
            await entry.handler(command_ctx, message)
        else:
            await asyncio.to_thread(entry.handler, command_ctx, message)
        return

    # Unknown callback data: acknowledge only
    logger.debug("Unknown callback data", extra={"callback_data": data, "user_id": user_id})
    await ctx.api.answer_callback_query(cb_id)
