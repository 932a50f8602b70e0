from __future__ import annotations

from typing import Optional

from googleapiclient.errors import HttpError

RATE_LIMIT_KEYWORDS = ("too many", "rate limit", "quota", "try again later")
RATE_LIMIT_REASONS = ("ratelimitexceeded", "userratelimitexceeded", "quotaexceeded")


class SyncError(Exception):
    pass


class ProviderError(SyncError):
    """Failure reported by the calendar provider."""


class TransientProviderError(ProviderError):
    """Rate limit or quota error; safe to retry after a delay."""


class PermanentProviderError(ProviderError):
    pass


class EventNotFoundError(PermanentProviderError):
    pass


class DataError(SyncError):
    """A source row cannot be turned into a lesson."""

    def __init__(self, row_index: int, message: str) -> None:
        super().__init__(f"row {row_index + 2}: {message}")
        self.row_index = row_index


class ConfigurationError(SyncError):
    """A required table or column is missing; fatal for that table."""


def _http_status(exc: Exception) -> Optional[int]:
    resp = getattr(exc, "resp", None)
    status = getattr(resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _error_text(exc: Exception) -> str:
    parts = [str(exc)]
    content = getattr(exc, "content", None)
    if isinstance(content, bytes):
        parts.append(content.decode("utf-8", errors="replace"))
    elif content:
        parts.append(str(content))
    return " ".join(parts).lower()


def is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, TransientProviderError):
        return True
    status = _http_status(exc)
    text = _error_text(exc)
    if status == 429:
        return True
    if status in (403, 400) and any(reason in text for reason in RATE_LIMIT_REASONS):
        return True
    return any(keyword in text for keyword in RATE_LIMIT_KEYWORDS)


def classify_provider_error(exc: Exception) -> ProviderError:
    """Map any provider exception onto the transient/permanent taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    if is_rate_limit_error(exc):
        error: ProviderError = TransientProviderError(str(exc))
    elif isinstance(exc, HttpError) and _http_status(exc) in (404, 410):
        error = EventNotFoundError(str(exc))
    else:
        error = PermanentProviderError(str(exc))
    error.__cause__ = exc
    return error
