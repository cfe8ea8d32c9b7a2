import pytest

from errors import (
    InsufficientCapacityError, InvalidBookingIdError, InvalidBookingStateError,
    InvalidSeatSelectionError, InvalidShowIdError, InvalidUserError, PriceTierMismatchError,
    SeatUnavailableError,
)
from models import Booking

ALICE = "alice@example.com"
BOB = "bob@example.com"


def booking_count(db):
    with db.get_session() as session:
        return session.query(Booking).count()


class TestCreateBooking:

    def test_selected_seats_are_claimed_and_priced(self, bookings, show):
        result = bookings.create_booking(ALICE, show.sid, 2, ["A1", "B1"])

        assert result["status"] == "Pending"
        assert result["seats"] == ["A1", "B1"]
        assert result["total_cost"] == 1800 + 1200
        assert bookings.remaining_capacity(show.sid) == 3
        assert bookings.available_seats(show.sid) == ["A2", "B2", "B3"]

    def test_missing_selections_filled_in_layout_order(self, bookings, show):
        result = bookings.create_booking(ALICE, show.sid, 3, ["B3"])

        assert result["seats"] == ["B3", "A1", "A2"]
        assert result["total_cost"] == 1200 + 1800 + 1800

    def test_no_selection_takes_first_free_seats(self, bookings, show):
        bookings.create_booking(BOB, show.sid, 1, ["A1"])
        result = bookings.create_booking(ALICE, show.sid, 2)

        assert result["seats"] == ["A2", "B1"]

    def test_unknown_user_rejected_without_side_effects(self, db, bookings, show):
        with pytest.raises(InvalidUserError):
            bookings.create_booking("nobody@example.com", show.sid, 1)

        assert booking_count(db) == 0
        assert bookings.remaining_capacity(show.sid) == 5

    def test_unknown_show_rejected(self, bookings, show):
        with pytest.raises(InvalidShowIdError):
            bookings.create_booking(ALICE, show.sid + 1, 1)

    @pytest.mark.parametrize("requested", [0, -1, 6])
    def test_seat_count_outside_capacity_rejected(self, db, bookings, show, requested):
        with pytest.raises(InsufficientCapacityError):
            bookings.create_booking(ALICE, show.sid, requested)

        assert booking_count(db) == 0

    def test_seat_outside_theater_rejected(self, db, bookings, show):
        with pytest.raises(SeatUnavailableError):
            bookings.create_booking(ALICE, show.sid, 1, ["Z9"])

        assert booking_count(db) == 0

    def test_taken_seat_leaves_no_partial_booking(self, db, bookings, show):
        bookings.create_booking(BOB, show.sid, 1, ["A1"])

        with pytest.raises(SeatUnavailableError):
            bookings.create_booking(ALICE, show.sid, 2, ["B1", "A1"])

        assert booking_count(db) == 1
        assert "B1" in bookings.available_seats(show.sid)
        assert bookings.remaining_capacity(show.sid) == 4

    def test_repeated_seat_rejected(self, bookings, show):
        with pytest.raises(InvalidSeatSelectionError):
            bookings.create_booking(ALICE, show.sid, 2, ["A1", "A1"])

    def test_user_and_capacity_checked_before_selections(self, bookings, show):
        with pytest.raises(InvalidUserError):
            bookings.create_booking("nobody@example.com", show.sid, 2, ["A1", "A1"])
        with pytest.raises(InsufficientCapacityError):
            bookings.create_booking(ALICE, show.sid, 6, ["A1", "A1"])

    def test_more_selections_than_requested_rejected(self, bookings, show):
        with pytest.raises(InvalidSeatSelectionError):
            bookings.create_booking(ALICE, show.sid, 1, ["A1", "A2"])


def test_capacity_two_scenario(bookings, make_show, users):
    """Fill a two-seat show, get rejected, cancel, then succeed on retry."""
    small = make_show(seats=[("A1", "standard"), ("A2", "standard")])

    first = bookings.create_booking(ALICE, small.sid, 2)
    assert bookings.remaining_capacity(small.sid) == 0

    with pytest.raises(InsufficientCapacityError):
        bookings.create_booking(BOB, small.sid, 1)

    bookings.cancel_booking(first["booking_id"])
    assert bookings.remaining_capacity(small.sid) == 2

    retried = bookings.create_booking(BOB, small.sid, 1)
    assert retried["status"] == "Pending"
    assert bookings.remaining_capacity(small.sid) == 1


class TestCancelBooking:

    def test_cancel_releases_seats(self, bookings, show):
        booking = bookings.create_booking(ALICE, show.sid, 2, ["A1", "A2"])

        result = bookings.cancel_booking(booking["booking_id"])

        assert result == {"booking_id": booking["booking_id"], "status": "Cancelled", "released": 2}
        assert bookings.remaining_capacity(show.sid) == 5
        assert bookings.get_booking(booking["booking_id"])["seats"] == []

    def test_cancel_twice_is_noop(self, bookings, show):
        booking = bookings.create_booking(ALICE, show.sid, 1)
        bookings.cancel_booking(booking["booking_id"])

        again = bookings.cancel_booking(booking["booking_id"])

        assert again["status"] == "Cancelled"
        assert again["released"] == 0

    def test_cancel_paid_booking_drops_payment(self, bookings, payments, show):
        booking = bookings.create_booking(ALICE, show.sid, 1, ["B2"])
        payments.record_payment(booking["booking_id"], "card")

        bookings.cancel_booking(booking["booking_id"])

        details = bookings.get_booking(booking["booking_id"])
        assert details["status"] == "Cancelled"
        assert details["payments"] == []
        assert "B2" in bookings.available_seats(show.sid)

    def test_cancel_unknown_booking(self, bookings, show):
        with pytest.raises(InvalidBookingIdError):
            bookings.cancel_booking(999)


class TestChangeSeats:

    def test_exchange_within_tier(self, bookings, show):
        booking = bookings.create_booking(ALICE, show.sid, 2, ["A1", "B1"])

        result = bookings.change_seats(booking["booking_id"], "B1", "B3")

        assert result["assigned_seat"] == "B3"
        details = bookings.get_booking(booking["booking_id"])
        assert details["seats"] == ["A1", "B3"]
        assert details["status"] == "Pending"
        assert details["total_cost"] == booking["total_cost"]
        assert "B1" in bookings.available_seats(show.sid)

    def test_exchange_keeps_paid_status(self, bookings, payments, show):
        booking = bookings.create_booking(ALICE, show.sid, 1, ["A1"])
        payments.record_payment(booking["booking_id"], "card")

        bookings.change_seats(booking["booking_id"], "A1", "A2")

        assert bookings.get_booking(booking["booking_id"])["status"] == "Paid"

    def test_tier_mismatch_even_when_free(self, bookings, show):
        booking = bookings.create_booking(ALICE, show.sid, 1, ["B1"])

        with pytest.raises(PriceTierMismatchError):
            bookings.change_seats(booking["booking_id"], "B1", "A1")

        assert bookings.get_booking(booking["booking_id"])["seats"] == ["B1"]

    def test_same_tier_seat_held_by_other_booking(self, bookings, show):
        booking = bookings.create_booking(ALICE, show.sid, 1, ["B1"])
        bookings.create_booking(BOB, show.sid, 1, ["B3"])

        with pytest.raises(SeatUnavailableError):
            bookings.change_seats(booking["booking_id"], "B1", "B3")

        assert bookings.get_booking(booking["booking_id"])["seats"] == ["B1"]

    def test_new_seat_outside_theater(self, bookings, show):
        booking = bookings.create_booking(ALICE, show.sid, 1, ["B1"])

        with pytest.raises(SeatUnavailableError):
            bookings.change_seats(booking["booking_id"], "B1", "Z9")

    def test_old_seat_must_belong_to_booking(self, bookings, show):
        booking = bookings.create_booking(ALICE, show.sid, 1, ["B1"])

        with pytest.raises(InvalidSeatSelectionError):
            bookings.change_seats(booking["booking_id"], "B2", "B3")

    def test_cancelled_booking_cannot_change(self, bookings, show):
        booking = bookings.create_booking(ALICE, show.sid, 1, ["B1"])
        bookings.cancel_booking(booking["booking_id"])

        with pytest.raises(InvalidBookingStateError):
            bookings.change_seats(booking["booking_id"], "B1", "B2")

    def test_unknown_booking(self, bookings, show):
        with pytest.raises(InvalidBookingIdError):
            bookings.change_seats(404, "B1", "B2")


def test_get_booking_summary(bookings, show):
    booking = bookings.create_booking(ALICE, show.sid, 2, ["B1", "B2"])

    details = bookings.get_booking(booking["booking_id"])

    assert details["email"] == ALICE
    assert details["show_id"] == show.sid
    assert details["requested_seats"] == 2
    assert details["seats"] == ["B1", "B2"]
    assert details["total_cost"] == 2400
    assert details["payments"] == []
