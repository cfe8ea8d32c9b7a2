"""Database coordination layer: engine, transactional sessions and catalog glue."""

from sqlalchemy import create_engine, event, func, text
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, InterfaceError, ProgrammingError, SQLAlchemyError
from contextlib import contextmanager
from datetime import date, time
from typing import Dict, Iterable, Optional, Tuple
import logging

from errors import (
    DuplicateUserError, InvalidRequestError, InvalidShowIdError, StoreUnavailableError, TicketingError,
    TransactionConflictError,
)
from models import (
    Base, Booking, BookingStatus, Cinema, CinemaSeat, Movie, Play, Show, ShowSeat,
    Theater, User,
)

logger = logging.getLogger(__name__)

# SQLSTATE codes PostgreSQL uses for lock and serialization losers
_CONFLICT_SQLSTATES = {'40001', '40P01', '55P03'}


def _is_conflict(exc: DBAPIError) -> bool:
    pgcode = getattr(exc.orig, 'pgcode', None)
    if pgcode in _CONFLICT_SQLSTATES:
        return True
    message = str(exc.orig).lower()
    return 'locked' in message or 'busy' in message


def translate_store_error(exc: SQLAlchemyError) -> TicketingError:
    """Map a failed statement or commit onto the error kinds callers understand."""
    if isinstance(exc, IntegrityError):
        return TransactionConflictError(f"concurrent update rejected: {exc.orig}")
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return StoreUnavailableError(f"database connection lost: {exc.orig}")
        if _is_conflict(exc):
            return TransactionConflictError(f"transaction conflict: {exc.orig}")
        if isinstance(exc, (DataError, ProgrammingError, InterfaceError)):
            return InvalidRequestError(f"value rejected by the database: {exc.orig}")
    return StoreUnavailableError(f"database error: {exc}")


class DatabaseManager:
    """Thread-safe façade over SQLAlchemy sessions and transactional flows."""

    def __init__(self, database_url: str, pool_size: int = 20, max_overflow: int = 40,
                 lock_timeout: float = 5.0):
        self.database_url = database_url
        self.is_sqlite = database_url.startswith('sqlite')

        if self.is_sqlite:
            self.engine = create_engine(
                database_url,
                connect_args={'check_same_thread': False, 'timeout': lock_timeout},
                echo=False
            )
            self._configure_sqlite()
        else:
            self.engine = create_engine(
                database_url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=True,  # Reconnect if connection lost
                pool_recycle=3600,   # Recycle connections after 1 hour
                connect_args={'options': f'-c lock_timeout={int(lock_timeout * 1000)}'},
                echo=False
            )
        self.session_factory = scoped_session(sessionmaker(bind=self.engine))

        # Create tables
        Base.metadata.create_all(self.engine)

    def _configure_sqlite(self):
        """Make every SQLite transaction take the write lock up front and enforce foreign keys."""

        @event.listens_for(self.engine, 'connect')
        def on_connect(dbapi_connection, connection_record):
            # pysqlite would otherwise defer BEGIN until the first write
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

        @event.listens_for(self.engine, 'begin')
        def on_begin(conn):
            conn.exec_driver_sql('BEGIN IMMEDIATE')

    @contextmanager
    def get_session(self):
        """Provide a transactional scope, committing on success and rolling back otherwise."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except TicketingError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error: {e}")
            raise translate_store_error(e) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self):
        self.session_factory.remove()
        self.engine.dispose()

    # Catalog maintenance. These are plain inserts used by the HTTP layer and fixtures.

    def add_user(self, email: str, fname: str, lname: str, phone: Optional[str] = None) -> Dict:
        with self.get_session() as session:
            if session.get(User, email) is not None:
                raise DuplicateUserError(f"user {email} already exists")
            session.add(User(email=email, fname=fname, lname=lname, phone=phone))
        logger.info(f"Added user {email}")
        return {"email": email, "fname": fname, "lname": lname}

    def add_movie(self, title: str, rdate: Optional[date] = None, country: Optional[str] = None,
                  description: Optional[str] = None, duration: Optional[int] = None,
                  lang: Optional[str] = None, genre: Optional[str] = None) -> int:
        with self.get_session() as session:
            movie = Movie(title=title, rdate=rdate, country=country, description=description,
                          duration=duration, lang=lang, genre=genre)
            session.add(movie)
            session.flush()
            return movie.mvid

    def add_cinema(self, cname: str, city: Optional[str] = None) -> int:
        with self.get_session() as session:
            cinema = Cinema(cname=cname, city=city, tnum=0)
            session.add(cinema)
            session.flush()
            return cinema.cid

    def add_theater(self, cid: int, tname: str, seats: Iterable[Tuple[str, str]]) -> int:
        """Create a theater whose capacity is the number of (seat number, price tier) pairs given."""
        seats = list(seats)
        with self.get_session() as session:
            cinema = session.get(Cinema, cid, with_for_update=True)
            if cinema is None:
                raise ValueError(f"cinema {cid} does not exist")

            theater = Theater(cid=cid, tname=tname, tseats=len(seats))
            theater.seats = [CinemaSeat(sno=sno, price_tier=tier) for sno, tier in seats]
            session.add(theater)
            cinema.tnum = (cinema.tnum or 0) + 1
            session.flush()
            return theater.tid

    def schedule_show(self, mvid: int, tid: int, sdate: date, sttime: time,
                      edtime: Optional[time], tier_prices: Dict[str, int]) -> int:
        """Create a show, link it to its theater and lay out one free show seat per theater seat."""
        with self.get_session() as session:
            theater = session.get(Theater, tid)
            if theater is None:
                raise ValueError(f"theater {tid} does not exist")
            if session.get(Movie, mvid) is None:
                raise ValueError(f"movie {mvid} does not exist")

            missing = {seat.price_tier for seat in theater.seats} - set(tier_prices)
            if missing:
                raise ValueError(f"no price given for tier(s): {', '.join(sorted(missing))}")

            show = Show(mvid=mvid, sdate=sdate, sttime=sttime, edtime=edtime)
            session.add(show)
            session.flush()

            session.add(Play(sid=show.sid, tid=tid))
            session.add_all([
                ShowSeat(sid=show.sid, csid=seat.csid, bid=None, price=tier_prices[seat.price_tier])
                for seat in theater.seats
            ])

            logger.info(f"Scheduled show {show.sid} in theater {tid} with {len(theater.seats)} seats")
            return show.sid

    def get_show_status(self, sid: int) -> Dict:
        """Return capacity aggregates and per-seat details for the given show."""
        with self.get_session() as session:
            show = session.get(Show, sid)
            if show is None:
                raise InvalidShowIdError(f"show {sid} not found")

            theater = (
                session.query(Theater)
                .join(Play, Play.tid == Theater.tid)
                .filter(Play.sid == sid)
                .first()
            )

            rows = (
                session.query(CinemaSeat.sno, CinemaSeat.price_tier, ShowSeat.price, ShowSeat.bid)
                .join(ShowSeat, ShowSeat.csid == CinemaSeat.csid)
                .filter(ShowSeat.sid == sid)
                .order_by(CinemaSeat.csid)
                .all()
            )

            booked = sum(1 for row in rows if row.bid is not None)
            total_seats = theater.tseats if theater else 0
            pending = (
                session.query(func.count(Booking.bid))
                .filter(Booking.sid == sid, Booking.status == BookingStatus.PENDING)
                .scalar()
            )

            return {
                "show_id": sid,
                "theater_id": theater.tid if theater else None,
                "total_seats": total_seats,
                "available_seats": len(rows) - booked,
                "booked_seats": booked,
                "pending_bookings": pending,
                "seats": [
                    {
                        "seat_number": row.sno,
                        "price_tier": row.price_tier,
                        "price": row.price,
                        "booking_id": row.bid,
                    } for row in rows
                ],
            }

    def health_check(self) -> Dict:
        """Report database connectivity and show count; used by the /health endpoint."""
        try:
            with self.get_session() as session:
                # Test database connection
                session.execute(text("SELECT 1"))

                # Count shows
                show_count = session.query(Show).count()

                return {
                    "status": "healthy",
                    "database": "connected",
                    "shows": show_count
                }
        except TicketingError as e:
            logger.error(f"Health check failed: {e}")
            return {
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e)
            }
