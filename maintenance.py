"""Bulk maintenance over many bookings and shows at once."""

from datetime import date
import logging

from database_manager import DatabaseManager
from models import Booking, BookingStatus, Payment, Play, Show, ShowSeat, Theater
from seat_inventory import SeatInventory

logger = logging.getLogger(__name__)


class MaintenanceSweeper:
    """Mass-cancel, purge and show-removal routines; each runs as a single transaction."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def cancel_all_pending(self) -> int:
        """Release the seats of every Pending booking and cancel them all."""
        with self.db.get_session() as session:
            pending = [
                bid for (bid,) in session.query(Booking.bid)
                .filter(Booking.status == BookingStatus.PENDING)
                .order_by(Booking.bid)
                .with_for_update()
            ]
            if not pending:
                return 0

            released = SeatInventory(session).release_bookings(pending)
            session.query(Booking).filter(Booking.bid.in_(pending)).update(
                {Booking.status: BookingStatus.CANCELLED},
                synchronize_session=False
            )

            logger.info(f"Cancelled {len(pending)} pending booking(s), {released} seat(s) released")
            return len(pending)

    def purge_cancelled(self) -> int:
        """Delete every Cancelled booking row; running it again reports zero."""
        with self.db.get_session() as session:
            cancelled = [
                bid for (bid,) in session.query(Booking.bid)
                .filter(Booking.status == BookingStatus.CANCELLED)
                .order_by(Booking.bid)
                .with_for_update()
            ]
            if not cancelled:
                return 0

            # Seats and payments are cleared at cancellation; this only catches stragglers
            stray_seats = SeatInventory(session).release_bookings(cancelled)
            stray_payments = session.query(Payment).filter(
                Payment.bid.in_(cancelled)
            ).delete(synchronize_session=False)
            if stray_seats or stray_payments:
                logger.warning(
                    f"Purge found {stray_seats} seat(s) and {stray_payments} payment(s) "
                    f"still attached to cancelled bookings"
                )

            purged = session.query(Booking).filter(
                Booking.bid.in_(cancelled)
            ).delete(synchronize_session=False)

            logger.info(f"Purged {purged} cancelled booking(s)")
            return purged

    def remove_shows_on(self, cid: int, show_date: date) -> int:
        """Delete every show of a cinema on a date, cancelling the bookings that reference it.

        Live bookings of a removed show are cancelled (seats released, payments
        deleted) and detached from the show so the show row can go; a later
        purge removes them.
        """
        with self.db.get_session() as session:
            shows = [
                sid for (sid,) in session.query(Show.sid)
                .join(Play, Play.sid == Show.sid)
                .join(Theater, Theater.tid == Play.tid)
                .filter(Theater.cid == cid, Show.sdate == show_date)
                .order_by(Show.sid)
                .distinct()
            ]
            if not shows:
                return 0

            inventory = SeatInventory(session)
            cancelled = 0
            for sid in shows:
                session.query(Show).filter(Show.sid == sid).with_for_update().one()

                live = [
                    bid for (bid,) in session.query(Booking.bid)
                    .filter(Booking.sid == sid, Booking.status != BookingStatus.CANCELLED)
                    .order_by(Booking.bid)
                    .with_for_update()
                ]
                if live:
                    inventory.release_bookings(live)
                    session.query(Payment).filter(Payment.bid.in_(live)).delete(synchronize_session=False)
                    session.query(Booking).filter(Booking.bid.in_(live)).update(
                        {Booking.status: BookingStatus.CANCELLED},
                        synchronize_session=False
                    )
                    cancelled += len(live)

                session.query(Booking).filter(Booking.sid == sid).update(
                    {Booking.sid: None},
                    synchronize_session=False
                )
                session.query(ShowSeat).filter(ShowSeat.sid == sid).delete(synchronize_session=False)
                session.query(Play).filter(Play.sid == sid).delete(synchronize_session=False)
                session.query(Show).filter(Show.sid == sid).delete(synchronize_session=False)

            logger.info(
                f"Removed {len(shows)} show(s) of cinema {cid} on {show_date.isoformat()}, "
                f"{cancelled} booking(s) cancelled"
            )
            return len(shows)
