"""Exception hierarchy for the tgrelay Bot API SDK."""

from typing import Any, Dict, Optional


class APIException(Exception):
    """Base exception for non-2xx (or ``ok=false``) responses from the Bot API.

    Attributes:
        status_code: HTTP status code returned by the API.
        response_body: Raw response body as a dict, when available.
    """

    def __init__(self, status_code: int, response_body: Optional[Dict[str, Any]] = None) -> None:
        """Initialise with the HTTP status code and optional body."""
        self.status_code = status_code
        self.response_body = response_body or {}
        super().__init__(f"API error {status_code}: {self.description}")

    @property
    def description(self) -> str:
        return self.response_body.get("description", "Unknown error")

    @property
    def retry_after(self) -> Optional[int]:
        """Seconds the platform asked us to wait (flood control), if any."""
        parameters = self.response_body.get("parameters") or {}
        value = parameters.get("retry_after")
        return value if isinstance(value, int) else None

    @property
    def is_transient(self) -> bool:
        """True for rate limiting and server-side failures worth retrying."""
        return self.status_code == 429 or self.status_code >= 500


class NetworkError(Exception):
    """Transport-level failure (connection refused, read timeout, …).

    Always transient: the request may be retried unchanged.
    """
