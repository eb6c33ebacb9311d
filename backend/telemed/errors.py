"""
Error kinds raised by the login and booking core.

Each kind carries the machine-readable code and HTTP status the API layer
renders as ``{"error": {"code", "message", "details"}}``.
"""

import logging
from typing import List, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TelemedError(Exception):
    code = "ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request failed."

    def __init__(self, message: Optional[str] = None, details: Optional[List[dict]] = None):
        self.message = message or self.default_message
        self.details = details or []
        super().__init__(self.message)


class ValidationFailed(TelemedError):
    code = "VALIDATION_ERROR"
    default_message = "Please fill in all fields correctly."


class InvalidCredentials(TelemedError):
    code = "INVALID_CREDENTIALS"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Incorrect email or password."


class Unauthorized(TelemedError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Please log in first."


class Forbidden(TelemedError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You do not have access to this resource."


class AccountLocked(TelemedError):
    code = "ACCOUNT_LOCKED"
    status_code = status.HTTP_423_LOCKED
    default_message = "Account is temporarily locked."


class IPBlocked(TelemedError):
    code = "IP_BLOCKED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many login attempts from this address. Please try again later."


class TooManyAttempts(TelemedError):
    code = "TOO_MANY_ATTEMPTS"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many failed login attempts."


class NotFound(TelemedError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found."


class Duplicate(TelemedError):
    code = "DUPLICATE"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This data is already in use."


class InvalidTimeRange(TelemedError):
    code = "INVALID_TIME_RANGE"
    default_message = "Invalid time range."


class SlotNotFound(TelemedError):
    code = "SLOT_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Slot not found."


class SlotNotAvailable(TelemedError):
    code = "SLOT_NOT_AVAILABLE"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This slot is not available for booking."


class SlotAlreadyBooked(TelemedError):
    code = "SLOT_ALREADY_BOOKED"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This date has already been booked."


class DateOutOfRange(TelemedError):
    code = "DATE_OUT_OF_RANGE"
    default_message = "The chosen date is outside the doctor's available range."


class BookingTooSoon(TelemedError):
    code = "BOOKING_TOO_SOON"
    default_message = "Bookings can be made from tomorrow onwards."


class PatientAlreadyBookedOnDate(TelemedError):
    code = "PATIENT_ALREADY_BOOKED_ON_DATE"
    status_code = status.HTTP_409_CONFLICT
    default_message = "You already have an appointment on this date."


def error_body(code: str, message: str, details: Optional[List[dict]] = None) -> dict:
    body = {"code": code, "message": message}
    if details:
        body["details"] = details
    return {"error": body}


def format_validation_errors(errors) -> List[dict]:
    """Flatten pydantic errors into field/message pairs."""
    out = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        out.append({"field": ".".join(loc), "message": err.get("msg", "")})
    return out


async def telemed_error_handler(request: Request, exc: TelemedError):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            ValidationFailed.code,
            ValidationFailed.default_message,
            format_validation_errors(exc.errors()),
        ),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("INTERNAL_ERROR", "Internal error. Please try again."),
    )
