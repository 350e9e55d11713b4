from __future__ import annotations

from typing import Optional

from models import ReservationStatus


class ParkingError(Exception):
    """
    Base for every error the reservation core surfaces to its callers.
    status_code is the HTTP status the API layer answers with.
    """

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ParkingError):
    status_code = 400


class CancellationWindowError(ParkingError):
    status_code = 400


class NotAuthorizedError(ParkingError):
    status_code = 403


class NotFoundError(ParkingError):
    status_code = 404


class SlotUnavailableError(ParkingError):
    status_code = 409


class ConfirmationCodeError(ParkingError):
    status_code = 503


class InvalidStateError(ParkingError):
    status_code = 409

    def __init__(self, current_status: ReservationStatus, message: Optional[str] = None) -> None:
        super().__init__(message or f"Reservation status is {current_status.value}")
        self.current_status = current_status


class StaleStatusError(Exception):
    """
    Raised by a store when a status compare-and-set loses a race.
    """

    def __init__(self, reservation_id: str, expected: ReservationStatus, actual: ReservationStatus) -> None:
        super().__init__(
            f"reservation {reservation_id}: expected {expected.value}, found {actual.value}"
        )
        self.reservation_id = reservation_id
        self.expected = expected
        self.actual = actual


class DuplicateConfirmationCodeError(Exception):
    """
    Raised by a store when a confirmation code is already taken.
    """
