"""
Tagged errors for calls to Google APIs (Gmail + OAuth token endpoint).

Every non-success response is classified exactly once, here, into one of
AuthError, RateLimitError or FetchError. Callers react to the exception type
and never inspect status codes or message text themselves.
"""

from typing import Any

import httpx

AUTH_STATUS_MARKERS = ("UNAUTHENTICATED",)
AUTH_REASON_MARKERS = ("authError",)
AUTH_TEXT_MARKERS = ("Invalid Credentials", "invalid_grant", "UNAUTHENTICATED")

RATE_LIMIT_STATUS_MARKERS = ("RESOURCE_EXHAUSTED",)
RATE_LIMIT_REASON_MARKERS = (
    "rateLimitExceeded",
    "userRateLimitExceeded",
    "quotaExceeded",
    "dailyLimitExceeded",
)
RATE_LIMIT_TEXT_MARKERS = ("quotaExceeded", "rateLimitExceeded", "Quota exceeded")


class GoogleApiError(Exception):
    """Base class for classified Google API failures."""

    kind = "fetch"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}

    def to_dict(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"kind": self.kind, "message": str(self)}
        if self.status_code is not None:
            detail["status_code"] = self.status_code
        return detail


class AuthError(GoogleApiError):
    """Credential invalid or expired. Only the token lifecycle manager recovers from it."""

    kind = "auth"


class RateLimitError(GoogleApiError):
    """Quota or throttling signal; safe to retry with backoff."""

    kind = "rate_limit"


class FetchError(GoogleApiError):
    """Any other non-success response or transport failure."""

    kind = "fetch"


def _error_fields(payload: Any) -> tuple[str, list[str], str]:
    """Pull (status, reasons, message) out of a Google error body."""
    if not isinstance(payload, dict):
        return "", [], ""

    error = payload.get("error", payload)
    if isinstance(error, str):
        # OAuth token endpoint: {"error": "invalid_grant", "error_description": "..."}
        return "", [error], str(payload.get("error_description", ""))
    if not isinstance(error, dict):
        return "", [], ""

    reasons = [
        str(item.get("reason", ""))
        for item in error.get("errors", []) or []
        if isinstance(item, dict)
    ]
    return str(error.get("status", "")), reasons, str(error.get("message", ""))


def classify_google_error(
    status_code: int, payload: Any = None, text: str = "", operation: str = "request"
) -> GoogleApiError:
    """
    Build the tagged error for a non-success Google API response.

    Args:
        status_code: HTTP status of the response
        payload: Parsed JSON body, if any
        text: Raw body text, used when the body is not JSON
        operation: Name of the call, for the error message
    """
    status, reasons, message = _error_fields(payload)
    haystack = " ".join([text or "", message, *reasons])
    data = payload if isinstance(payload, dict) else {}
    summary = f"{operation} failed ({status_code}): {message or (text or '')[:200]}".rstrip(": ")

    if (
        status_code == 401
        or status in AUTH_STATUS_MARKERS
        or any(reason in AUTH_REASON_MARKERS for reason in reasons)
        or "invalid_grant" in reasons
        or any(marker in haystack for marker in AUTH_TEXT_MARKERS)
    ):
        return AuthError(summary, status_code=status_code, response_data=data)

    if (
        status_code == 429
        or status in RATE_LIMIT_STATUS_MARKERS
        or (
            status_code == 403
            and (
                any(reason in RATE_LIMIT_REASON_MARKERS for reason in reasons)
                or any(marker in haystack for marker in RATE_LIMIT_TEXT_MARKERS)
            )
        )
    ):
        return RateLimitError(summary, status_code=status_code, response_data=data)

    return FetchError(summary, status_code=status_code, response_data=data)


def classify_response(response: httpx.Response, operation: str) -> GoogleApiError:
    """Classify a failed httpx response."""
    try:
        payload = response.json() if response.content else None
    except ValueError:
        payload = None
    return classify_google_error(
        response.status_code, payload=payload, text=response.text, operation=operation
    )
