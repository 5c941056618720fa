"""Classify playback failures into recovery categories."""

import socket
import urllib.error
from enum import Enum
from typing import Iterator, Optional

from .errors import PlaybackError, PlaybackErrorCode

MAX_CAUSE_DEPTH = 3

# Phrases the remote service uses when the session has to be refreshed
RELOAD_PHRASES = (
    "page needs to be reloaded",
    "page must be reloaded",
    "reload",
)

NETWORK_ERROR_CODES = frozenset(
    {
        PlaybackErrorCode.NETWORK_CONNECTION_FAILED,
        PlaybackErrorCode.NETWORK_CONNECTION_TIMEOUT,
    }
)


class ErrorCategory(Enum):
    EXPIRED_URL = "ExpiredUrl"
    RANGE_NOT_SATISFIABLE = "RangeNotSatisfiable"
    RATE_LIMITED = "RateLimited"
    NETWORK_FAILURE = "NetworkFailure"
    GENERIC = "Generic"


def iter_causes(error: Optional[BaseException], max_depth: int = MAX_CAUSE_DEPTH) -> Iterator[BaseException]:
    """Yield *error* and its causes, at most *max_depth* exceptions in total.

    Explicit causes (``raise ... from``) win over implicit context. Cycles
    stop the walk.
    """
    seen = set()
    current = error
    depth = 0
    while current is not None and depth < max_depth and id(current) not in seen:
        seen.add(id(current))
        yield current
        depth += 1
        current = current.__cause__ or current.__context__


def http_status_of(error: BaseException) -> Optional[int]:
    """Return the HTTP status carried by *error*, if it carries one."""
    if isinstance(error, PlaybackError):
        return error.status_code
    if isinstance(error, urllib.error.HTTPError):
        return error.code
    # yt-dlp's networking HTTPError exposes the status here
    status = getattr(error, "status", None)
    if isinstance(status, int):
        return status
    return None


def find_http_status(error: BaseException, max_depth: int = MAX_CAUSE_DEPTH) -> Optional[int]:
    for cause in iter_causes(error, max_depth):
        status = http_status_of(cause)
        if status is not None:
            return status
    return None


def _mentions_reload(error: BaseException) -> bool:
    for cause in iter_causes(error, MAX_CAUSE_DEPTH):
        message = str(cause).lower()
        if any(phrase in message for phrase in RELOAD_PHRASES):
            return True
    return False


def _is_unreachable_host(error: BaseException) -> bool:
    if isinstance(error, (ConnectionRefusedError, socket.gaierror)):
        return True
    if isinstance(error, urllib.error.URLError) and not isinstance(error, urllib.error.HTTPError):
        return isinstance(error.reason, (ConnectionRefusedError, socket.gaierror))
    return False


def _is_network_failure(error: BaseException) -> bool:
    if isinstance(error, PlaybackError) and error.error_code in NETWORK_ERROR_CODES:
        return True
    return any(_is_unreachable_host(cause) for cause in iter_causes(error, MAX_CAUSE_DEPTH))


def classify(error: BaseException) -> ErrorCategory:
    """Map a playback failure to the category that decides how to recover.

    First match wins: HTTP status (403, 416), then reload phrases in the
    message or its two nearest causes, then network failure, then generic.
    """
    status = find_http_status(error)
    if status == 403:
        return ErrorCategory.EXPIRED_URL
    if status == 416:
        return ErrorCategory.RANGE_NOT_SATISFIABLE
    if _mentions_reload(error):
        return ErrorCategory.RATE_LIMITED
    if _is_network_failure(error):
        return ErrorCategory.NETWORK_FAILURE
    return ErrorCategory.GENERIC
