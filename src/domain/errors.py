"""
Exception classes for DSN parsing.

Every failure raised while building a recipient Status derives from
StatusError, so the structural parser can tell "this report is malformed"
(recovered locally, report skipped) apart from a genuinely unexpected
failure (DsnParseError, surfaced to the caller).
"""


# ============================================================================
# Status Construction Errors
# ============================================================================

class StatusError(ValueError):
    """Base class for errors raised while building a recipient Status."""
    pass


class MalformedCodeError(StatusError):
    """Raised when a status code is not in the "class.subject.detail" format."""
    pass


class UnsupportedClassError(StatusError):
    """Raised when the class of a status code is not 2, 4 or 5 (RFC 3463)."""
    pass


class UnknownStatusError(StatusError):
    """Raised when a Status field value does not start with a digit."""

    def __init__(self, status: str):
        super().__init__(
            f"Status '{status}' is not a valid status code. "
            f"This message does not comply with RFC 3464."
        )
        self.status = status


class UnknownActionError(StatusError):
    """Raised when an Action field value is not one of the RFC 3464 actions."""
    pass


class MissingStatusFieldError(StatusError):
    """Raised when the Action or Status field of a recipient block is missing."""
    pass


# ============================================================================
# Parser Errors
# ============================================================================

class DsnParseError(Exception):
    """
    Raised when parsing a DSN fails for an unexpected reason.

    Attributes:
        raw_message: The message that could not be parsed
    """

    def __init__(self, message: str, raw_message: str):
        super().__init__(message)
        self.raw_message = raw_message
