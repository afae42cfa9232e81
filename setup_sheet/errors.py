from __future__ import annotations

from typing import Any, Optional


class SetupSheetError(Exception):
    """Base class for every failure raised by the setup sheet core."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Client-side validation (never reaches the network)


class ValidationError(SetupSheetError):
    pass


class InvalidScheduleError(ValidationError):
    pass


class InvalidDateRangeError(ValidationError):
    pass


class DuplicateNameError(ValidationError):
    def __init__(self, message: str, *, code: str) -> None:
        super().__init__(message, status_code=400)
        self.code = code


# ---------------------------------------------------------------------------
# Lookups


class NotFoundError(SetupSheetError):
    pass


class TemplateNotFoundError(NotFoundError):
    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template {template_id} not found", status_code=404)
        self.template_id = template_id


# ---------------------------------------------------------------------------
# Conflict validator rejections


class AssignmentError(SetupSheetError):
    pass


class AssignmentConflictError(AssignmentError):
    """The employee already holds a position in an overlapping time block."""

    def __init__(self, message: str, *, time_block: Any = None) -> None:
        super().__init__(message)
        self.time_block = time_block


class PositionFullError(AssignmentError):
    def __init__(self, message: str, *, position: Any = None) -> None:
        super().__init__(message)
        self.position = position


# ---------------------------------------------------------------------------
# Persistence transport


class TransportError(SetupSheetError):
    pass


class PayloadTooLargeError(TransportError):
    pass


class ConflictError(SetupSheetError):
    """A write was made against a stale version of the entity."""


class AuthenticationError(TransportError):
    pass
