"""Exception hierarchy for the update engine.

Only :class:`ConfigurationError` (raised before any dispatch happens) and
:class:`FatalSourceError` (the terminal result of a run) are ever visible to
the caller of :class:`engine.controller.BotController`.  Transient fetch
errors, decode errors and handler errors are absorbed where they occur.
"""


class ConfigurationError(Exception):
    """Invalid settings or registry; the controller never enters ``Running``."""


class DuplicateHandlerError(ConfigurationError):
    """Two registrations share the same command name or event kind."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Handler already registered for {key!r}")


class SourceConflictError(ConfigurationError):
    """More than one update source (polling and push listener) was configured."""


class FatalSourceError(Exception):
    """The update source cannot continue (auth rejection, bind failure, …).

    The original cause is chained as ``__cause__``.
    """
