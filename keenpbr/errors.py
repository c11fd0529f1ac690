"""
keen-pbr error taxonomy.

Every failure the engine can report maps to one PBRErrorCode. Mutations of the
configuration surface ValidationError / MalformedDocument immediately;
SourceUnavailable and ApplyFailure are caught per list / per ipset by the
action orchestrator and end up in the action output instead.
"""

from enum import Enum
from typing import Optional


class PBRErrorCode(Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MALFORMED_DOCUMENT = "MALFORMED_DOCUMENT"
    SOURCE_UNAVAILABLE = "SOURCE_UNAVAILABLE"
    APPLY_FAILURE = "APPLY_FAILURE"
    BUSY = "BUSY"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"


class PBRError(Exception):
    """Base exception for keen-pbr failures."""

    error_code = PBRErrorCode.VALIDATION_ERROR
    http_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"{self.error_code.value}: {message}")


class ValidationError(PBRError):
    """Configuration violates a structural invariant."""

    error_code = PBRErrorCode.VALIDATION_ERROR
    http_code = 400


class MalformedDocument(PBRError):
    """Raw configuration text cannot be parsed."""

    error_code = PBRErrorCode.MALFORMED_DOCUMENT
    http_code = 400

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        self.line = line
        self.column = column
        if line is not None:
            position = f"line {line}" if column is None else f"line {line}, column {column}"
            message = f"{message} ({position})"
        super().__init__(message)


class SourceUnavailable(PBRError):
    """A list's file or URL could not be read."""

    error_code = PBRErrorCode.SOURCE_UNAVAILABLE
    http_code = 502

    def __init__(self, list_name: str, reason: str):
        self.list_name = list_name
        self.reason = reason
        super().__init__(f"list '{list_name}': {reason}")


class ApplyFailure(PBRError):
    """An OS-level ipset / rule / route operation failed."""

    error_code = PBRErrorCode.APPLY_FAILURE
    http_code = 500

    def __init__(self, target: str, reason: str):
        self.target = target
        self.reason = reason
        super().__init__(f"{target}: {reason}")


class Busy(PBRError):
    """Another action is already running."""

    error_code = PBRErrorCode.BUSY
    http_code = 409


class NotFound(PBRError):
    """Referenced list or ipset does not exist."""

    error_code = PBRErrorCode.NOT_FOUND
    http_code = 404


class Conflict(PBRError):
    """Object with the same name already exists."""

    error_code = PBRErrorCode.CONFLICT
    http_code = 409
