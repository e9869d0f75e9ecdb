"""
Sync Errors
===========

Exceptions raised by the external API clients and the function client,
plus the transient-failure classification used by the job processor.
"""

import re
from typing import Any, Optional

from config.constants import TRANSIENT_MESSAGE_MARKERS, TRANSIENT_STATUS_CODES

# Matches "HTTP 503", "http 429", "HTTP502" inside provider error text
_HTTP_TRANSIENT_PATTERN = re.compile(r'http\s*(5\d\d|429)', re.IGNORECASE)


def is_transient_status(status_code: Optional[int]) -> bool:
    """True for HTTP statuses worth retrying (408, 425, 429 and 5xx)."""
    if status_code is None:
        return False
    return status_code in TRANSIENT_STATUS_CODES or 500 <= status_code <= 599


def is_transient_message(message: Optional[str]) -> bool:
    """True when an error message looks like a timeout, network or rate-limit failure."""
    text = (message or '').lower()
    if any(marker in text for marker in TRANSIENT_MESSAGE_MARKERS):
        return True
    return bool(_HTTP_TRANSIENT_PATTERN.search(text))


class SyncHandlerError(Exception):
    """A trader sync handler failed.

    Attributes:
        status_code: HTTP status from the upstream service, when there was one
        transient: Whether the job should be retried
    """

    def __init__(self, message: str, status_code: Optional[int] = None, transient: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        if transient is None:
            transient = is_transient_status(status_code) or is_transient_message(message)
        self.transient = transient


class BullawareAPIError(SyncHandlerError):
    """Bullaware API returned an error or could not be reached."""
    pass


class EtoroAPIError(SyncHandlerError):
    """eToro profile endpoint returned an error or an unusable payload."""
    pass


class FunctionInvocationError(Exception):
    """Invoking a sync function over HTTP failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body
