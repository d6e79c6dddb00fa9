"""Application configuration — environment variables and derived constants.

Loads the bot token, the update-source selection and the engine's tuning
knobs from the environment via ``python-dotenv``.  All values are resolved at
import time so other modules can ``from config import …`` without repeated
lookups; :func:`load_settings` turns them into an immutable
:class:`engine.settings.Settings`.
"""

# ── stdlib ───────────────────────────────────────────────────────────────────
import os

# ── third-party ──────────────────────────────────────────────────────────────
from dotenv import load_dotenv

# ── core / engine ────────────────────────────────────────────────────────────
from core.logger import RelayLogger
from engine.settings import PollingOptions, Settings, WebhookOptions

# ── Environment bootstrap ────────────────────────────────────────────────────
load_dotenv()

# ── Logger (used for startup diagnostics at the bottom of this module) ───────
logger = RelayLogger.get_logger()


# ── Helper functions (private) ───────────────────────────────────────────────


def _parse_int(name: str, default: int) -> int:
    """Read an integer variable, falling back to *default* on bad input."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer in environment, using default", extra={"variable": name, "value": raw, "default": default})
        return default


def _parse_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number in environment, using default", extra={"variable": name, "value": raw, "default": default})
        return default


def _parse_bool(raw: str | None) -> bool:
    return (raw or "").strip().lower() in ("1", "true", "yes", "on")


def _parse_list(raw: str | None) -> tuple[str, ...] | None:
    """Parse a comma-separated list (e.g. ``"message,callback_query"``).

    Empty tokens are skipped; an unset or blank variable yields ``None``.
    """
    if not raw or not raw.strip():
        return None
    return tuple(token.strip() for token in raw.split(",") if token.strip())


def _optional(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


# ── Public constants ─────────────────────────────────────────────────────────

BOT_TOKEN: str | None = os.environ.get("BOT_TOKEN")
API_BASE_URL: str = os.environ.get("API_BASE_URL", "https://api.telegram.org").rstrip("/")
BOT_NAME: str | None = (_optional("BOT_NAME") or "").lstrip("@") or None

UPDATE_SOURCE: str = os.environ.get("UPDATE_SOURCE", "polling").strip().lower() or "polling"

POLL_LIMIT: int = _parse_int("POLL_LIMIT", 100)
POLL_TIMEOUT: int = _parse_int("POLL_TIMEOUT", 30)

WEBHOOK_HOST: str = os.environ.get("WEBHOOK_HOST", "127.0.0.1").strip() or "127.0.0.1"
WEBHOOK_PORT: int = _parse_int("WEBHOOK_PORT", 8006)
WEBHOOK_PATH: str = os.environ.get("WEBHOOK_PATH", "/").strip() or "/"
WEBHOOK_URL: str | None = _optional("WEBHOOK_URL")
WEBHOOK_SECRET: str | None = _optional("WEBHOOK_SECRET")

ALLOWED_UPDATES: tuple[str, ...] | None = _parse_list(os.environ.get("ALLOWED_UPDATES"))
SHUTDOWN_GRACE: float = _parse_float("SHUTDOWN_GRACE", 10.0)
PUBLISH_COMMANDS: bool = _parse_bool(os.environ.get("PUBLISH_COMMANDS"))


def load_settings() -> Settings:
    """Build the run :class:`Settings` from the constants above.

    ``UPDATE_SOURCE=webhook`` selects the push listener; anything else
    selects long polling.  Validation happens in ``BotController.start``.
    """
    polling = None
    webhook = None
    if UPDATE_SOURCE == "webhook":
        webhook = WebhookOptions(
            host=WEBHOOK_HOST,
            port=WEBHOOK_PORT,
            path=WEBHOOK_PATH,
            secret_token=WEBHOOK_SECRET,
            public_url=WEBHOOK_URL,
        )
    else:
        if UPDATE_SOURCE != "polling":
            logger.warning("Unknown UPDATE_SOURCE, falling back to polling", extra={"update_source": UPDATE_SOURCE})
        polling = PollingOptions(limit=POLL_LIMIT, timeout=POLL_TIMEOUT)

    return Settings(
        polling=polling,
        webhook=webhook,
        bot_name=BOT_NAME,
        shutdown_grace=SHUTDOWN_GRACE,
        allowed_updates=ALLOWED_UPDATES,
        publish_commands=PUBLISH_COMMANDS,
    )


# ── Startup diagnostics ─────────────────────────────────────────────────────

if BOT_TOKEN:
    logger.info("Config loaded — BOT_TOKEN is set", extra={"api_base_url": API_BASE_URL})
else:
    logger.warning("Config loaded — BOT_TOKEN is NOT set")

logger.info(
    "Update source selected",
    extra={"update_source": UPDATE_SOURCE, "bot_name": BOT_NAME, "allowed_updates": ALLOWED_UPDATES},
)
