"""Classified failures reported in rendition events.

Every error that can end a rendition carries a ``reason`` token which is sent
verbatim as ``errorReason`` in ``rendition_failed`` events. Exceptions that are
not classified are reported as ``GenericError``.
"""

import time
from enum import Enum
from typing import Optional


class Reason(str, Enum):
    GENERIC_ERROR = "GenericError"
    SOURCE_FORMAT_UNSUPPORTED = "SourceFormatUnsupported"
    RENDITION_FORMAT_UNSUPPORTED = "RenditionFormatUnsupported"
    SOURCE_UNSUPPORTED = "SourceUnsupported"
    SOURCE_CORRUPT = "SourceCorrupt"
    RENDITION_TOO_LARGE = "RenditionTooLarge"


class ClassifiedError(Exception):
    """Base exception for all failures that map to an event reason."""

    reason: Reason = Reason.GENERIC_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.date = time.time()


class GenericError(ClassifiedError):
    """Catch-all failure, tagged with where it happened (e.g. ``worker_download``)."""

    def __init__(self, message: str, location: Optional[str] = None):
        super().__init__(message)
        self.location = location


class SourceUnsupportedError(ClassifiedError):
    """The specific source is unsupported even though its type is."""

    reason = Reason.SOURCE_UNSUPPORTED


class SourceCorruptError(ClassifiedError):
    """The source (or an intermediate file) is corrupt or empty."""

    reason = Reason.SOURCE_CORRUPT


class SourceFormatUnsupportedError(ClassifiedError):
    reason = Reason.SOURCE_FORMAT_UNSUPPORTED


class RenditionFormatUnsupportedError(ClassifiedError):
    reason = Reason.RENDITION_FORMAT_UNSUPPORTED


class RenditionTooLarge(ClassifiedError):
    reason = Reason.RENDITION_TOO_LARGE


class InvalidStateTransitionError(Exception):
    """Raised when the activation lifecycle is driven out of order."""

    def __init__(self, current_state: str, target_state: str):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(f"Invalid activation state transition: {current_state} -> {target_state}")


def reason_of(err: Optional[BaseException]) -> str:
    """Event reason token for any exception."""
    if isinstance(err, ClassifiedError):
        return err.reason.value
    return Reason.GENERIC_ERROR.value


def message_of(err: Optional[BaseException]) -> Optional[str]:
    if err is None:
        return None
    return str(err) or type(err).__name__


def location_of(err: Optional[BaseException], default: str) -> str:
    location = getattr(err, "location", None)
    return location or default


class WorkRequestError(ValueError):
    """The activation parameters cannot be turned into a work request."""
