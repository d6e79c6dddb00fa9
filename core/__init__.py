"""Framework-agnostic primitives — structured logging and the shared extension store.

This package must NEVER import from ``engine/``, ``sdk/`` or ``bot/``.
"""

from core.extensions import ExtensionStore
from core.logger import RelayLogger

__all__ = [
    "ExtensionStore",
    "RelayLogger",
]
