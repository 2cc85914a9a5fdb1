"""Exception taxonomy for the scheduling core.

Every error that can reach the language model carries a short machine
``code`` and a patient-safe ``message``.  The tool loop turns these into
JSON tool results so the model can recover conversationally; none of them
abort a chat turn.
"""

from __future__ import annotations

from typing import Any


class SchedulingError(Exception):
    """Base class for recoverable scheduling failures."""

    code = "SCHEDULING_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        """Serialise for a tool-result message."""
        return {"success": False, "error_code": self.code, "error": self.message}


class MissingInfoError(SchedulingError):
    """A required patient field is absent or looks invented."""

    code = "MISSING_INFO"


class SlotUnavailableError(SchedulingError):
    """The requested slot cannot be booked.

    ``alternatives`` is only populated for peer-booking conflicts; hard
    failures (closed hours, non-working day, blocked period) carry none.
    """

    code = "SLOT_UNAVAILABLE"

    def __init__(self, message: str, alternatives: list[dict[str, str]] | None = None):
        self.alternatives = alternatives or []
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.alternatives:
            payload["error_code"] = "SLOT_UNAVAILABLE_WITH_ALTERNATIVES"
            payload["alternatives"] = self.alternatives
        return payload


class VerificationError(SchedulingError):
    """Reference code / phone pair did not verify.

    The message never says which half was wrong.
    """

    code = "VERIFICATION_FAILED"

    def __init__(self, message: str = (
        "We could not verify this appointment. Please double-check the "
        "reference number and the phone number used for the booking."
    )):
        super().__init__(message)


class AlreadyCancelledError(SchedulingError):
    """The appointment is already cancelled; nothing was changed."""

    code = "ALREADY_CANCELLED"


class ReferenceCodeExhaustedError(SchedulingError):
    """No free reference code could be generated within the retry budget."""

    code = "REFERENCE_CODE_EXHAUSTED"


class ToolExecutionError(SchedulingError):
    """The model emitted an unknown tool or malformed arguments."""

    code = "TOOL_EXECUTION_FAILED"


class ExternalServiceError(Exception):
    """A best-effort external call (calendar, email) failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class CalendarAPIError(ExternalServiceError):
    """Raised when a Google Calendar call fails."""


class EmailDeliveryError(ExternalServiceError):
    """Raised when SES rejects an outbound email."""
