"""Process entry point — ``python main.py``.

Wires the API façade, the reference bot's registry and the controller, then
runs until SIGINT/SIGTERM or a fatal update-source failure.
"""

import asyncio
import sys

from config import API_BASE_URL, BOT_TOKEN, load_settings
from core.logger import RelayLogger
from engine.controller import BotController
from engine.exceptions import ConfigurationError
from sdk.api import BotAPI
from bot import build_registry

logger = RelayLogger.get_logger()


async def main() -> int:
    """Run the bot once and return the process exit code.

    Raises:
        EnvironmentError: If ``BOT_TOKEN`` is not set.
    """
    if not BOT_TOKEN:
        raise EnvironmentError("BOT_TOKEN environment variable is not set or is empty.")

    api = BotAPI.from_token(BOT_TOKEN, api_url=API_BASE_URL)
    try:
        registry = build_registry()
        controller = BotController(api, registry)
        logger.info("tgrelay bot is starting", extra={"handlers": len(registry)})
        result = await controller.run(load_settings())
    except ConfigurationError as exc:
        logger.error("Invalid configuration", extra={"error": str(exc)})
        return 2

    if not result.ok:
        logger.error("Bot stopped after a fatal error", extra={"error": str(result.error)})
        return 1
    logger.info("Bot stopped", extra={"stragglers": result.stragglers})
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    finally:
        RelayLogger.cleanup()
