"""
Concurrency and invariant tests for the booking engine.

Threads race real transactions against a shared SQLite file, the same way
concurrent HTTP requests race against the production database.
"""

import random
from concurrent.futures import ThreadPoolExecutor

from sqlalchemy import func

from errors import InsufficientCapacityError, SeatUnavailableError, TicketingError
from models import Booking, BookingStatus, ShowSeat

USERS = ["alice@example.com", "bob@example.com"]
TEN_SEATS = [(f"S{num}", "standard") for num in range(1, 11)]


def verify_seat_invariant(db, sid):
    """Live bookings hold exactly their seats, cancelled ones hold none, capacity is never exceeded."""
    with db.get_session() as session:
        held = dict(
            session.query(ShowSeat.bid, func.count())
            .filter(ShowSeat.sid == sid, ShowSeat.bid.isnot(None))
            .group_by(ShowSeat.bid)
            .all()
        )
        for booking in session.query(Booking).filter(Booking.sid == sid):
            expected = 0 if booking.status == BookingStatus.CANCELLED else booking.seats
            assert held.get(booking.bid, 0) == expected, f"booking {booking.bid} holds {held.get(booking.bid, 0)}"
        assert sum(held.values()) <= len(TEN_SEATS)


def run_concurrently(task, count, workers=16):
    """Run task(i) for i in range(count) across threads; return results and typed errors."""
    def guarded(i):
        try:
            return task(i)
        except TicketingError as error:
            return error

    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(guarded, range(count)))


def test_concurrent_single_seat_requests_fill_exactly_capacity(bookings, make_show, users, retrying):
    show = make_show(seats=TEN_SEATS)

    outcomes = run_concurrently(
        lambda i: retrying(bookings.create_booking, USERS[i % 2], show.sid, 1),
        count=25
    )

    successes = [o for o in outcomes if isinstance(o, dict)]
    rejected = [o for o in outcomes if isinstance(o, InsufficientCapacityError)]
    assert len(successes) == 10
    assert len(rejected) == 15
    assert len({seat for o in successes for seat in o["seats"]}) == 10
    assert bookings.remaining_capacity(show.sid) == 0
    verify_seat_invariant(bookings.db, show.sid)


def test_concurrent_multi_seat_requests_never_overbook(bookings, make_show, users, retrying):
    show = make_show(seats=TEN_SEATS)

    outcomes = run_concurrently(
        lambda i: retrying(bookings.create_booking, USERS[i % 2], show.sid, 2),
        count=12
    )

    successes = [o for o in outcomes if isinstance(o, dict)]
    assert len(successes) == 5
    assert all(isinstance(o, InsufficientCapacityError) for o in outcomes if not isinstance(o, dict))
    assert bookings.remaining_capacity(show.sid) == 0
    verify_seat_invariant(bookings.db, show.sid)


def test_last_seat_race(bookings, make_show, users, retrying):
    """Many users select the same seat; exactly one claim wins."""
    show = make_show(seats=TEN_SEATS)

    outcomes = run_concurrently(
        lambda i: retrying(bookings.create_booking, USERS[i % 2], show.sid, 1, ["S5"]),
        count=20
    )

    successes = [o for o in outcomes if isinstance(o, dict)]
    assert len(successes) == 1
    assert successes[0]["seats"] == ["S5"]
    assert all(isinstance(o, SeatUnavailableError) for o in outcomes if not isinstance(o, dict))
    verify_seat_invariant(bookings.db, show.sid)


def test_concurrent_seat_exchanges_for_one_free_seat(bookings, make_show, users, retrying):
    show = make_show(seats=TEN_SEATS)
    holders = [
        bookings.create_booking(USERS[i % 2], show.sid, 1, [f"S{i + 1}"])
        for i in range(9)
    ]

    outcomes = run_concurrently(
        lambda i: retrying(bookings.change_seats, holders[i]["booking_id"], f"S{i + 1}", "S10"),
        count=9
    )

    assert len([o for o in outcomes if isinstance(o, dict)]) == 1
    assert bookings.available_seats(show.sid) != []
    assert bookings.remaining_capacity(show.sid) == 1
    verify_seat_invariant(bookings.db, show.sid)


def test_mixed_workload_keeps_invariants(bookings, payments, sweeper, make_show, users, retrying):
    show = make_show(seats=TEN_SEATS)
    rng = random.Random(7)
    plan = [rng.choice(["book", "book", "book", "cancel", "pay", "sweep"]) for _ in range(60)]

    def step(i):
        action = plan[i]
        if action == "book":
            return retrying(bookings.create_booking, USERS[i % 2], show.sid, rng.randint(1, 3))
        if action == "sweep":
            return retrying(sweeper.cancel_all_pending)

        with bookings.db.get_session() as session:
            candidates = [bid for (bid,) in session.query(Booking.bid).filter(Booking.sid == show.sid)]
        if not candidates:
            return None
        bid = rng.choice(candidates)
        if action == "cancel":
            return retrying(bookings.cancel_booking, bid)
        return retrying(payments.record_payment, bid, "card")

    outcomes = run_concurrently(step, count=len(plan))

    assert not [o for o in outcomes if isinstance(o, TicketingError) and o.retryable]
    verify_seat_invariant(bookings.db, show.sid)
    assert 0 <= bookings.remaining_capacity(show.sid) <= len(TEN_SEATS)
