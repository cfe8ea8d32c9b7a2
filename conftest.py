"""
Test Configuration and Fixtures

Every test gets its own file-backed SQLite database under tmp_path, so the
engine runs with real transactions and threads can contend for it.
"""

from datetime import date, time
from types import SimpleNamespace

import pytest

from booking_manager import BookingManager
from database_manager import DatabaseManager
from errors import TicketingError
from maintenance import MaintenanceSweeper
from payment_processor import PaymentProcessor

SHOW_DATE = date(2026, 11, 20)
TIER_PRICES = {"premium": 1800, "standard": 1200}

# A1-A2 premium, B1-B3 standard
DEFAULT_SEATS = [("A1", "premium"), ("A2", "premium"), ("B1", "standard"), ("B2", "standard"), ("B3", "standard")]

ALICE = "alice@example.com"
BOB = "bob@example.com"


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'ticketmaster.db'}", lock_timeout=30)
    yield manager
    manager.dispose()


@pytest.fixture
def make_show(db):
    """Factory: schedule a show in a fresh theater and return its ids."""

    def _make_show(seats=DEFAULT_SEATS, cid=None, show_date=SHOW_DATE, start=time(19, 0), title="Love Actually"):
        if cid is None:
            cid = db.add_cinema("Riverside Cinema", city="Riverside")
        tid = db.add_theater(cid, "Screen 1", seats)
        mvid = db.add_movie(title, rdate=date(2003, 11, 14), duration=8100)
        sid = db.schedule_show(mvid, tid, show_date, start, time(21, 15), TIER_PRICES)
        return SimpleNamespace(cid=cid, tid=tid, mvid=mvid, sid=sid)

    return _make_show


@pytest.fixture
def users(db):
    db.add_user(ALICE, "Alice", "Smith", "555-0100")
    db.add_user(BOB, "Bob", "Jones", "555-0101")
    return [ALICE, BOB]


@pytest.fixture
def show(make_show, users):
    return make_show()


@pytest.fixture
def bookings(db):
    return BookingManager(db)


@pytest.fixture
def payments(db):
    return PaymentProcessor(db, transaction_ids=lambda: 12345678)


@pytest.fixture
def sweeper(db):
    return MaintenanceSweeper(db)


@pytest.fixture
def retrying():
    """Call an operation, retrying while it fails with a retryable error."""

    def _retrying(operation, *args, attempts=10, **kwargs):
        for attempt in range(attempts):
            try:
                return operation(*args, **kwargs)
            except TicketingError as error:
                if not error.retryable or attempt == attempts - 1:
                    raise

    return _retrying
