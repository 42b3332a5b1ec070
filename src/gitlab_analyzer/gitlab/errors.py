"""GitLab API error type and retry classification."""
from typing import Any, Optional

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class GitLabApiError(Exception):
    """A failed GitLab API call.

    status_code is None for transport failures (DNS, connect, read timeout),
    which are always retryable. 429 and 5xx are retryable; any other 4xx is
    fatal and surfaced immediately.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        url: Optional[str] = None,
    ):
        super().__init__(
            f"GitLab API error ({status_code}): {message}" if status_code else f"GitLab network error: {message}"
        )
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        self.url = url

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code in RETRYABLE_STATUS_CODES


def extract_error_message(payload: Any) -> str:
    """Pull a human-readable message out of a GitLab error body."""
    if isinstance(payload, dict):
        for key in ("message", "error_description", "error"):
            value = payload.get(key)
            if isinstance(value, str):
                return value
            if isinstance(value, (dict, list)):
                return str(value)
    if isinstance(payload, str) and payload:
        return payload
    return "GitLab API request failed"


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds. HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(0.0, seconds)
