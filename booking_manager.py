"""Booking lifecycle: create, cancel and re-seat bookings against a show's inventory."""

from datetime import datetime
from typing import Dict, Iterable, List, Optional
import logging

from database_manager import DatabaseManager
from errors import (
    InsufficientCapacityError, InvalidBookingIdError, InvalidBookingStateError,
    InvalidSeatSelectionError, InvalidShowIdError, InvalidUserError, PriceTierMismatchError,
    SeatUnavailableError,
)
from models import Booking, BookingStatus, CinemaSeat, Payment, Show, ShowSeat, User, utcnow
from seat_inventory import CapacityLedger, SeatInventory

logger = logging.getLogger(__name__)


def booking_summary(booking: Booking, inventory: SeatInventory) -> Dict:
    held = inventory.assigned_to(booking.bid)
    return {
        "booking_id": booking.bid,
        "status": booking.status.value,
        "show_id": booking.sid,
        "email": booking.email,
        "requested_seats": booking.seats,
        "booked_at": booking.bdatetime.isoformat(),
        "seats": inventory.seat_numbers(seat.csid for seat in held),
        "total_cost": sum(seat.price for seat in held),
    }


class BookingManager:
    """Drives bookings through Pending, Paid and Cancelled while keeping seat assignments consistent."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def create_booking(
        self,
        email: str,
        sid: int,
        requested_seats: int,
        seat_selections: Optional[Iterable[str]] = None,
        booked_at: Optional[datetime] = None
    ) -> Dict:
        """Create a Pending booking and claim its seats in one transaction.

        Explicit seat selections are claimed first; if fewer than
        ``requested_seats`` are given the rest are filled with free seats in
        seating-layout order. The show row stays locked from the capacity
        check until commit, so concurrent requests are serialized per show.
        """
        selections: List[str] = list(seat_selections or [])

        with self.db.get_session() as session:
            inventory = SeatInventory(session)
            ledger = CapacityLedger(session, inventory)

            # Step 1: Validate the requester and take the show lock
            if session.get(User, email) is None:
                raise InvalidUserError(f"no user with email {email}")

            ledger.lock_show(sid)

            # Step 2: Capacity check under the lock (CRITICAL SECTION)
            if not ledger.can_accommodate(sid, requested_seats):
                raise InsufficientCapacityError(
                    f"show {sid} cannot accommodate {requested_seats} seat(s); "
                    f"{ledger.remaining_capacity(sid)} remaining"
                )

            if len(selections) != len(set(selections)):
                raise InvalidSeatSelectionError("seat selections must not repeat a seat")
            if len(selections) > requested_seats:
                raise InvalidSeatSelectionError(
                    f"{len(selections)} seats selected for a booking of {requested_seats}"
                )

            # Step 3: Resolve selections and complete them from the free pool
            chosen = inventory.resolve(sid, selections)
            taken = [sno for sno in selections if chosen[sno].bid is not None]
            if taken:
                raise SeatUnavailableError(f"seat(s) {', '.join(taken)} already taken for show {sid}")

            claims = [(chosen[sno].csid, sno) for sno in selections]
            if len(claims) < requested_seats:
                picked = {csid for csid, _ in claims}
                free = [seat for seat in inventory.available_seats(sid) if seat.csid not in picked]
                needed = requested_seats - len(claims)
                if len(free) < needed:
                    raise InsufficientCapacityError(f"only {len(free)} free seat(s) left for show {sid}")
                claims.extend((seat.csid, seat.sno) for seat in free[:needed])

            # Step 4: Create the booking row
            booking = Booking(
                status=BookingStatus.PENDING,
                bdatetime=booked_at or utcnow(),
                seats=requested_seats,
                sid=sid,
                email=email
            )
            session.add(booking)
            session.flush()

            # Step 5: Claim every seat; any lost claim rolls the whole booking back
            for csid, sno in claims:
                if not inventory.assign(sid, csid, booking.bid):
                    raise SeatUnavailableError(f"seat {sno} was taken for show {sid}")

            total_cost = sum(inventory.price_of(sid, csid) for csid, _ in claims)

            logger.info(f"Booking {booking.bid} created for {email}: show {sid}, {requested_seats} seat(s)")

            return {
                "booking_id": booking.bid,
                "status": BookingStatus.PENDING.value,
                "show_id": sid,
                "seats": [sno for _, sno in claims],
                "total_cost": total_cost,
            }

    def cancel_booking(self, bid: int) -> Dict:
        """Release the booking's seats and mark it Cancelled; cancelling twice is a no-op."""
        with self.db.get_session() as session:
            booking = session.query(Booking).filter(Booking.bid == bid).with_for_update().first()
            if booking is None:
                raise InvalidBookingIdError(f"booking {bid} not found")

            if booking.status == BookingStatus.CANCELLED:
                return {"booking_id": bid, "status": booking.status.value, "released": 0}

            released = SeatInventory(session).release_booking(bid)
            session.query(Payment).filter(Payment.bid == bid).delete(synchronize_session=False)
            booking.status = BookingStatus.CANCELLED

            logger.info(f"Booking {bid} cancelled, {released} seat(s) released")
            return {"booking_id": bid, "status": BookingStatus.CANCELLED.value, "released": released}

    def change_seats(self, bid: int, seat_number_to_exchange: str, new_seat_number: str) -> Dict:
        """Swap one seat of a live booking for a free seat of the same show and price tier."""
        with self.db.get_session() as session:
            inventory = SeatInventory(session)
            ledger = CapacityLedger(session, inventory)

            row = session.query(Booking.sid, Booking.status).filter(Booking.bid == bid).first()
            if row is None:
                raise InvalidBookingIdError(f"booking {bid} not found")
            if row.sid is None:
                raise InvalidBookingStateError(bid, row.status, "change seats of")

            # Show before booking, the same lock order create_booking and the sweeper use
            ledger.lock_show(row.sid)
            booking = session.query(Booking).filter(Booking.bid == bid).with_for_update().one()
            if booking.status == BookingStatus.CANCELLED:
                raise InvalidBookingStateError(bid, booking.status, "change seats of")

            if seat_number_to_exchange == new_seat_number:
                raise InvalidSeatSelectionError("new seat must differ from the seat being exchanged")

            old_seat = (
                session.query(ShowSeat)
                .join(CinemaSeat, CinemaSeat.csid == ShowSeat.csid)
                .filter(
                    ShowSeat.sid == booking.sid,
                    ShowSeat.bid == bid,
                    CinemaSeat.sno == seat_number_to_exchange
                )
                .first()
            )
            if old_seat is None:
                raise InvalidSeatSelectionError(
                    f"seat {seat_number_to_exchange} is not held by booking {bid}"
                )

            new_seat = inventory.resolve(booking.sid, [new_seat_number])[new_seat_number]

            if new_seat.seat.price_tier != old_seat.seat.price_tier:
                raise PriceTierMismatchError(
                    f"seat {new_seat_number} is tier {new_seat.seat.price_tier}, "
                    f"seat {seat_number_to_exchange} is tier {old_seat.seat.price_tier}"
                )

            inventory.release(booking.sid, old_seat.csid)
            if not inventory.assign(booking.sid, new_seat.csid, bid):
                raise SeatUnavailableError(f"seat {new_seat_number} already taken for show {booking.sid}")

            logger.info(f"Booking {bid} moved from seat {seat_number_to_exchange} to {new_seat_number}")
            return {
                "booking_id": bid,
                "status": booking.status.value,
                "released_seat": seat_number_to_exchange,
                "assigned_seat": new_seat_number,
            }

    def get_booking(self, bid: int) -> Dict:
        with self.db.get_session() as session:
            booking = session.get(Booking, bid)
            if booking is None:
                raise InvalidBookingIdError(f"booking {bid} not found")

            summary = booking_summary(booking, SeatInventory(session))
            summary["payments"] = [
                {
                    "payment_id": payment.pid,
                    "method": payment.pmethod,
                    "amount": payment.amount,
                    "transaction_id": payment.trid,
                    "paid_at": payment.pdatetime.isoformat(),
                } for payment in booking.payments
            ]
            return summary

    def remaining_capacity(self, sid: int) -> int:
        with self.db.get_session() as session:
            if session.get(Show, sid) is None:
                raise InvalidShowIdError(f"show {sid} not found")
            return CapacityLedger(session, SeatInventory(session)).remaining_capacity(sid)

    def available_seats(self, sid: int) -> List[str]:
        with self.db.get_session() as session:
            if session.get(Show, sid) is None:
                raise InvalidShowIdError(f"show {sid} not found")
            return [seat.sno for seat in SeatInventory(session).available_seats(sid)]
