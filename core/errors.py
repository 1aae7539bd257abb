"""
Typed failures raised by the macro engine.

Every error carries a machine readable ``kind`` and a human readable
``message`` so that callers can render a notification without
inspecting the exception class.
"""

from __future__ import annotations
from typing import Any, Optional


class MacroError(Exception):
    kind = "error"

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.message} (status={self.status})"
        return self.message


class NotFoundError(MacroError):
    kind = "not_found"


class ConflictError(MacroError):
    kind = "conflict"


class ForbiddenError(MacroError):
    kind = "forbidden"


class RequestTimeoutError(MacroError):
    kind = "timeout"


class UnauthenticatedError(MacroError):
    kind = "unauthenticated"


class MalformedResponseError(MacroError):
    kind = "malformed_response"


class TransportError(MacroError):
    kind = "transport"


class InvalidMacroNameError(MacroError):
    kind = "invalid_name"


class PlayerBusyError(MacroError):
    kind = "player_busy"


class PlaybackError(MacroError):
    """Terminal write failed; steps after ``step_index`` were abandoned"""
    kind = "playback_failed"

    def __init__(self, message: str, step_index: int, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.step_index = step_index
        self.cause = cause


class StorageClosedError(TransportError):
    """The storage bridge was closed while a request was waiting on it"""
