"""Per-show seat inventory and the capacity ledger derived from it.

Both classes work inside a session opened by ``DatabaseManager.get_session``;
they never commit. Callers that check capacity and then claim seats must take
``CapacityLedger.lock_show`` first so the two steps share one serialized unit.
"""

from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import Dict, Iterable, List

from errors import InvalidShowIdError, SeatUnavailableError
from models import Booking, BookingStatus, CinemaSeat, Play, Show, ShowSeat, Theater


class SeatInventory:

    def __init__(self, session: Session):
        self.session = session

    def available_seats(self, sid: int) -> List[CinemaSeat]:
        """Seats of the show's theater with no assignment for this show."""
        return (
            self.session.query(CinemaSeat)
            .join(ShowSeat, ShowSeat.csid == CinemaSeat.csid)
            .filter(ShowSeat.sid == sid, ShowSeat.bid.is_(None))
            .order_by(CinemaSeat.csid)
            .all()
        )

    def assign(self, sid: int, csid: int, bid: int) -> bool:
        """Claim one seat for one booking; False if another booking already holds it.

        The claim is a single conditional UPDATE, so it only succeeds if the seat
        is still free when the row is written.
        """
        claimed = self.session.query(ShowSeat).filter(
            ShowSeat.sid == sid,
            ShowSeat.csid == csid,
            ShowSeat.bid.is_(None)
        ).update({ShowSeat.bid: bid}, synchronize_session=False)
        return claimed == 1

    def release(self, sid: int, csid: int) -> None:
        self.session.query(ShowSeat).filter(
            ShowSeat.sid == sid,
            ShowSeat.csid == csid
        ).update({ShowSeat.bid: None}, synchronize_session=False)

    def release_booking(self, bid: int) -> int:
        """Clear every assignment held by a booking and return how many were freed."""
        return self.session.query(ShowSeat).filter(
            ShowSeat.bid == bid
        ).update({ShowSeat.bid: None}, synchronize_session=False)

    def release_bookings(self, bids: List[int]) -> int:
        if not bids:
            return 0
        return self.session.query(ShowSeat).filter(
            ShowSeat.bid.in_(bids)
        ).update({ShowSeat.bid: None}, synchronize_session=False)

    def price_of(self, sid: int, csid: int) -> int:
        price = self.session.query(ShowSeat.price).filter(
            ShowSeat.sid == sid,
            ShowSeat.csid == csid
        ).scalar()
        if price is None:
            raise SeatUnavailableError(f"seat {csid} is not part of show {sid}")
        return price

    def resolve(self, sid: int, seat_numbers: Iterable[str]) -> Dict[str, ShowSeat]:
        """Map human seat numbers to the show's seat rows; unknown numbers are rejected."""
        seat_numbers = list(seat_numbers)
        if not seat_numbers:
            return {}

        rows = (
            self.session.query(CinemaSeat.sno, ShowSeat)
            .join(ShowSeat, ShowSeat.csid == CinemaSeat.csid)
            .filter(ShowSeat.sid == sid, CinemaSeat.sno.in_(seat_numbers))
            .all()
        )
        resolved = {sno: show_seat for sno, show_seat in rows}

        unknown = [sno for sno in seat_numbers if sno not in resolved]
        if unknown:
            raise SeatUnavailableError(
                f"seat(s) {', '.join(unknown)} do not belong to the theater of show {sid}"
            )
        return resolved

    def assigned_to(self, bid: int) -> List[ShowSeat]:
        return (
            self.session.query(ShowSeat)
            .filter(ShowSeat.bid == bid)
            .order_by(ShowSeat.csid)
            .all()
        )

    def seat_numbers(self, csids: Iterable[int]) -> List[str]:
        csids = list(csids)
        if not csids:
            return []
        rows = (
            self.session.query(CinemaSeat.csid, CinemaSeat.sno)
            .filter(CinemaSeat.csid.in_(csids))
            .all()
        )
        by_id = dict(rows)
        return [by_id[csid] for csid in csids]


class CapacityLedger:

    def __init__(self, session: Session, inventory: SeatInventory):
        self.session = session
        self.inventory = inventory

    def lock_show(self, sid: int) -> Show:
        """Take the per-show lock (SELECT ... FOR UPDATE) that serializes capacity changes."""
        show = self.session.query(Show).filter(Show.sid == sid).with_for_update().first()
        if show is None:
            raise InvalidShowIdError(f"show {sid} not found")
        return show

    def capacity(self, sid: int) -> int:
        tseats = (
            self.session.query(Theater.tseats)
            .join(Play, Play.tid == Theater.tid)
            .filter(Play.sid == sid)
            .scalar()
        )
        if tseats is None:
            raise InvalidShowIdError(f"show {sid} is not scheduled in any theater")
        return tseats

    def live_assignments(self, sid: int) -> int:
        return (
            self.session.query(func.count())
            .select_from(ShowSeat)
            .join(Booking, Booking.bid == ShowSeat.bid)
            .filter(ShowSeat.sid == sid, Booking.status != BookingStatus.CANCELLED)
            .scalar()
        )

    def remaining_capacity(self, sid: int) -> int:
        return self.capacity(sid) - self.live_assignments(sid)

    def can_accommodate(self, sid: int, requested_seats: int) -> bool:
        if requested_seats < 1 or requested_seats > self.remaining_capacity(sid):
            return False
        return requested_seats <= len(self.inventory.available_seats(sid))
