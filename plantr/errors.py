"""Error taxonomy for the plantr sync engine.

Every store and secret operation either returns a fully formed value or
raises one of these. Validation failures are normally absorbed (the record
is dropped) and only raised when a caller asks for strict decoding.
"""

from typing import Optional

__all__ = [
    "PlantrError",
    "ValidationError",
    "DecryptionError",
    "FormatError",
    "RelayTimeoutError",
    "PublishError",
    "OperationCancelled",
    "NotFoundError",
]


class PlantrError(Exception):
    """Base class for all plantr errors."""

    code = "PLANTR_E000"
    default_message = "Unexpected plantr error."

    def __init__(self, message: Optional[str] = None, context: Optional[str] = None):
        self.message = message or self.default_message
        self.context = context

        full_msg = f"[{self.code}] {self.message}"
        if context:
            full_msg += f" Context: {context}"

        super().__init__(full_msg)


class ValidationError(PlantrError):
    code = "PLANTR_E100"
    default_message = "Record does not satisfy the shape contract for its kind."


class DecryptionError(PlantrError):
    code = "PLANTR_E200"
    default_message = "Encryption capability unavailable or ciphertext rejected."


class FormatError(PlantrError):
    code = "PLANTR_E201"
    default_message = "Value is not a 64 character hex secret."


class RelayTimeoutError(PlantrError, TimeoutError):
    code = "PLANTR_E300"
    default_message = "Relay query exceeded its deadline."


class OperationCancelled(PlantrError):
    code = "PLANTR_E301"
    default_message = "Operation was cancelled by the caller."


class PublishError(PlantrError):
    code = "PLANTR_E400"
    default_message = "Signing or relay write failed."


class NotFoundError(PlantrError):
    code = "PLANTR_E404"
    default_message = "No current record exists for the requested coordinate."
