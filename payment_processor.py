"""Payment recording and removal for bookings."""

from datetime import datetime
from typing import Callable, Dict, Optional
import logging
import random

from database_manager import DatabaseManager
from errors import InvalidBookingIdError, InvalidBookingStateError
from models import Booking, BookingStatus, Payment, utcnow
from seat_inventory import SeatInventory

logger = logging.getLogger(__name__)

# Transaction ids are 8-digit numbers
TRANSACTION_ID_MIN = 10_000_000
TRANSACTION_ID_MAX = 99_999_999

_random = random.SystemRandom()


def generate_transaction_id() -> int:
    """Uniformly distributed 8-digit transaction id."""
    return _random.randint(TRANSACTION_ID_MIN, TRANSACTION_ID_MAX)


class PaymentProcessor:

    def __init__(self, db: DatabaseManager, transaction_ids: Optional[Callable[[], int]] = None):
        self.db = db
        self.transaction_ids = transaction_ids or generate_transaction_id

    def _lock_booking(self, session, bid: int) -> Booking:
        booking = session.query(Booking).filter(Booking.bid == bid).with_for_update().first()
        if booking is None:
            raise InvalidBookingIdError(f"booking {bid} not found")
        return booking

    def record_payment(self, bid: int, method: str, amount: Optional[int] = None,
                       paid_at: Optional[datetime] = None) -> Dict:
        """Record a payment for a fully seated Pending booking and mark it Paid.

        ``amount`` defaults to the sum of the booking's seat prices.
        """
        with self.db.get_session() as session:
            booking = self._lock_booking(session, bid)
            if booking.status != BookingStatus.PENDING:
                raise InvalidBookingStateError(bid, booking.status, "pay for")

            held = SeatInventory(session).assigned_to(bid)
            if len(held) != booking.seats:
                raise InvalidBookingStateError(
                    bid, f"{booking.status.value} with {len(held)} of {booking.seats} seats assigned", "pay for"
                )

            if amount is None:
                amount = sum(seat.price for seat in held)

            payment = Payment(
                bid=bid,
                pmethod=method,
                pdatetime=paid_at or utcnow(),
                amount=amount,
                trid=self.transaction_ids()
            )
            session.add(payment)
            booking.status = BookingStatus.PAID
            session.flush()

            logger.info(f"Payment {payment.pid} recorded for booking {bid}: {amount} via {method}")
            return {
                "payment_id": payment.pid,
                "booking_id": bid,
                "amount": amount,
                "method": method,
                "transaction_id": payment.trid,
                "status": BookingStatus.PAID.value,
            }

    def remove_payment(self, bid: int) -> Dict:
        """Delete the booking's payment, free its seats and mark it Cancelled."""
        with self.db.get_session() as session:
            booking = self._lock_booking(session, bid)

            released = SeatInventory(session).release_booking(bid)
            removed = session.query(Payment).filter(Payment.bid == bid).delete(synchronize_session=False)
            booking.status = BookingStatus.CANCELLED

            logger.info(f"Removed {removed} payment(s) from booking {bid}, {released} seat(s) released")
            return {
                "booking_id": bid,
                "status": BookingStatus.CANCELLED.value,
                "released": released,
                "payments_removed": removed,
            }
