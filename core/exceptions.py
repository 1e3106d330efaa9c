# core/exceptions.py

from contextlib import contextmanager

from django.db import IntegrityError

RESOLUTION_REQUIRED = "RESOLUTION_REQUIRED"


class ResolutionRequired(Exception):
    """
    A job was about to be persisted as completed without a JobResolution.

    Raised by the application fast-fail check and by translating the
    storage guard's rejection, so callers handle a single type.
    """

    code = RESOLUTION_REQUIRED
    user_message = "Complete this job by recording payment or a waiver first."

    def __init__(self, job_id=None, detail: str = ""):
        self.job_id = job_id
        self.detail = detail
        message = f"{RESOLUTION_REQUIRED}: job {job_id} has no resolution record"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class InvalidResolution(ValueError):
    """Resolution payload is inconsistent (e.g. a waiver without a reason)."""


class EnforcementError(RuntimeError):
    """The job-completion guards could not be installed. Fatal at startup."""


class PaymentProcessorError(Exception):
    """The payment processor rejected a call or could not be reached."""

    def __init__(self, message: str, *, code: str = "", retryable: bool = True):
        self.code = code
        self.retryable = retryable
        super().__init__(message)


class BookingConflict(Exception):
    """The booking's deposit is leased by, or was just moved by, another writer."""

    def __init__(self, booking_id, detail: str = ""):
        self.booking_id = booking_id
        super().__init__(f"Booking #{booking_id}: {detail}" if detail else f"Booking #{booking_id} changed concurrently")


def is_resolution_required_error(exc: BaseException) -> bool:
    return RESOLUTION_REQUIRED in str(exc)


@contextmanager
def translate_resolution_errors(job_id=None):
    """
    Turn the storage guard's IntegrityError into ResolutionRequired.

    Other integrity errors propagate untouched.
    """
    try:
        yield
    except IntegrityError as e:
        if is_resolution_required_error(e):
            raise ResolutionRequired(job_id, detail=str(e)) from e
        raise
