"""Typed errors raised by the booking engine and translated by the HTTP layer."""


class TicketingError(Exception):
    """Base class for every error the engine reports to its callers."""

    status_code = 400
    retryable = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    @property
    def kind(self) -> str:
        name = type(self).__name__
        return name[:-len("Error")] if name.endswith("Error") else name

    def to_dict(self):
        return {"error": self.message, "kind": self.kind, "retryable": self.retryable}


class InvalidUserError(TicketingError):
    status_code = 404


class InvalidShowIdError(TicketingError):
    status_code = 404


class InvalidBookingIdError(TicketingError):
    status_code = 404


class InsufficientCapacityError(TicketingError):
    status_code = 409


class SeatUnavailableError(TicketingError):
    status_code = 409


class PriceTierMismatchError(TicketingError):
    status_code = 409


class InvalidBookingStateError(TicketingError):
    status_code = 409

    def __init__(self, booking_id: int, status, action: str) -> None:
        self.booking_id = booking_id
        self.status = status
        status_name = getattr(status, "value", status)
        super().__init__(f"cannot {action} booking {booking_id} in status {status_name}")


class InvalidSeatSelectionError(TicketingError):
    status_code = 400


class InvalidRequestError(TicketingError):
    """The store rejected a value it cannot hold; resending it will not help."""

    status_code = 400


class DuplicateUserError(TicketingError):
    status_code = 409


class StoreUnavailableError(TicketingError):
    """The backing store could not be reached; the caller may retry."""

    status_code = 503
    retryable = True


class TransactionConflictError(TicketingError):
    """The atomic commit lost a race or timed out waiting on a lock; retryable."""

    status_code = 409
    retryable = True
