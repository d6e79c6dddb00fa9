"""Type-indexed extension store shared by every dispatched handler.

Each entry is keyed by a type (by default the type of the stored value), so a
handler asks for ``store.get(UsageCounter)`` and receives the single
``UsageCounter`` instance inserted at startup.

The store is touched from event-loop tasks *and* from worker threads (plain
handlers run via :func:`asyncio.to_thread`), so structural operations are
guarded by a :class:`threading.Lock`.  Only the store's own structure is
protected: two handlers mutating the *same* value still need their own
synchronisation, or must go through :meth:`ExtensionStore.update`, which runs
a read-modify-write under the entry's lock.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Iterator, Optional, TypeVar, overload

T = TypeVar("T")

_MISSING = object()


class ExtensionStore:
    """Concurrent mapping from a type to one owned value of that type."""

    def __init__(self) -> None:
        self._values: dict[type, Any] = {}
        self._entry_locks: dict[type, threading.Lock] = {}
        self._lock = threading.Lock()

    # ── structural operations ────────────────────────────────────────────

    def insert(self, value: Any, key: Optional[type] = None) -> Any:
        """Store *value* under *key* (defaults to ``type(value)``).

        Returns the previously stored value, or ``None``.
        """
        key = key if key is not None else type(value)
        if not isinstance(key, type):
            raise TypeError(f"Extension keys must be types, got {key!r}")
        with self._lock:
            previous = self._values.get(key)
            self._values[key] = value
            self._entry_locks.setdefault(key, threading.Lock())
        return previous

    @overload
    def get(self, key: type[T]) -> Optional[T]: ...

    @overload
    def get(self, key: type[T], default: T) -> T: ...

    def get(self, key: type[T], default: Any = None) -> Any:
        """Return the value stored under *key*, or *default*."""
        with self._lock:
            return self._values.get(key, default)

    def require(self, key: type[T]) -> T:
        """Return the value stored under *key*.

        Raises:
            KeyError: If nothing is stored under *key*.
        """
        value = self.get(key, _MISSING)
        if value is _MISSING:
            raise KeyError(f"No extension stored for {key.__name__}")
        return value

    def get_or_insert(self, key: type[T], factory: Callable[[], T]) -> T:
        """Return the value under *key*, creating it with *factory* if absent.

        The factory runs at most once per key, even under concurrent callers.
        """
        with self._lock:
            if key in self._values:
                return self._values[key]
            value = factory()
            self._values[key] = value
            self._entry_locks.setdefault(key, threading.Lock())
            return value

    def remove(self, key: type[T]) -> Optional[T]:
        """Remove and return the value under *key* (``None`` if absent)."""
        with self._lock:
            self._entry_locks.pop(key, None)
            return self._values.pop(key, None)

    # ── per-entry atomic update ──────────────────────────────────────────

    def update(self, key: type[T], func: Callable[[Optional[T]], T]) -> T:
        """Replace the value under *key* with ``func(current)`` atomically.

        ``func`` receives ``None`` when the entry does not exist yet.  Only
        callers going through :meth:`update` for the same key are serialised
        against each other; direct mutation of a value obtained via
        :meth:`get` is not covered.
        """
        with self._lock:
            entry_lock = self._entry_locks.setdefault(key, threading.Lock())
        with entry_lock:
            current = self.get(key)
            new_value = func(current)
            with self._lock:
                self._values[key] = new_value
            return new_value

    # ── dunder helpers ───────────────────────────────────────────────────

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def __iter__(self) -> Iterator[type]:
        with self._lock:
            return iter(list(self._values))

    def __repr__(self) -> str:
        with self._lock:
            names = ", ".join(sorted(k.__name__ for k in self._values))
        return f"ExtensionStore([{names}])"
