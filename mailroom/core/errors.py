"""Domain exceptions raised by the service layer."""
from __future__ import annotations


class MailroomError(Exception):
    """Base exception for the platform."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TenantMismatch(MailroomError):
    """A write tried to link rows owned by different tenants."""

    status_code = 403


class NotFound(MailroomError):
    """The entity does not exist or is not owned by the caller."""

    status_code = 404


class InvalidTransition(MailroomError):
    """Campaign status change not permitted from the current state."""

    status_code = 409


class DuplicateEnrollment(MailroomError):
    """The subscriber already has a delivery record for the campaign."""

    status_code = 409


class ConstraintViolation(MailroomError):
    """A uniqueness or validity rule rejected the write."""

    status_code = 409
