"""Read-only projections behind the reporting endpoints.

Every value reaches the database as a bound parameter.
"""

from datetime import date, time
from typing import Dict, List

from sqlalchemy import func

from database_manager import DatabaseManager
from models import Booking, BookingStatus, CinemaSeat, Movie, Play, Show, ShowSeat, Theater, User


def theaters_playing_show(db: DatabaseManager, sid: int) -> List[Dict]:
    with db.get_session() as session:
        rows = (
            session.query(Theater.tid, Theater.tname, Theater.cid)
            .join(Play, Play.tid == Theater.tid)
            .filter(Play.sid == sid)
            .order_by(Theater.tid)
            .all()
        )
        return [{"theater_id": tid, "name": tname, "cinema_id": cid} for tid, tname, cid in rows]


def shows_starting_at(db: DatabaseManager, sdate: date, sttime: time) -> List[Dict]:
    with db.get_session() as session:
        shows = (
            session.query(Show)
            .filter(Show.sdate == sdate, Show.sttime == sttime)
            .order_by(Show.sid)
            .all()
        )
        return [_show_row(show) for show in shows]


def movie_titles_containing(db: DatabaseManager, fragment: str, released_after: date) -> List[Dict]:
    """Movies whose title contains ``fragment`` (case-insensitive), released after a date."""
    pattern = f"%{fragment.lower()}%"
    with db.get_session() as session:
        movies = (
            session.query(Movie)
            .filter(func.lower(Movie.title).like(pattern), Movie.rdate > released_after)
            .order_by(Movie.rdate, Movie.mvid)
            .all()
        )
        return [
            {
                "movie_id": movie.mvid,
                "title": movie.title,
                "release_date": movie.rdate.isoformat() if movie.rdate else None,
                "genre": movie.genre,
            } for movie in movies
        ]


def users_with_pending_booking(db: DatabaseManager) -> List[Dict]:
    with db.get_session() as session:
        users = (
            session.query(User)
            .join(Booking, Booking.email == User.email)
            .filter(Booking.status == BookingStatus.PENDING)
            .distinct()
            .order_by(User.email)
            .all()
        )
        return [{"fname": user.fname, "lname": user.lname, "email": user.email} for user in users]


def movie_schedule(db: DatabaseManager, mvid: int, cid: int, start: date, end: date) -> List[Dict]:
    """Title, duration, date and start time of a movie's shows at one cinema in a date range."""
    with db.get_session() as session:
        rows = (
            session.query(Movie.title, Movie.duration, Show.sdate, Show.sttime)
            .join(Show, Show.mvid == Movie.mvid)
            .join(Play, Play.sid == Show.sid)
            .join(Theater, Theater.tid == Play.tid)
            .filter(
                Movie.mvid == mvid,
                Theater.cid == cid,
                Show.sdate.between(start, end)
            )
            .order_by(Show.sdate, Show.sttime)
            .all()
        )
        return [
            {
                "title": title,
                "duration": duration,
                "date": sdate.isoformat(),
                "start_time": sttime.isoformat(),
            } for title, duration, sdate, sttime in rows
        ]


def booking_history(db: DatabaseManager, email: str) -> List[Dict]:
    """Title, show date and start, theater and seat number for every seat a user holds."""
    with db.get_session() as session:
        rows = (
            session.query(Booking.bid, Movie.title, Show.sdate, Show.sttime, Theater.tname, CinemaSeat.sno)
            .join(ShowSeat, ShowSeat.bid == Booking.bid)
            .join(Show, Show.sid == ShowSeat.sid)
            .join(Movie, Movie.mvid == Show.mvid)
            .join(CinemaSeat, CinemaSeat.csid == ShowSeat.csid)
            .join(Theater, Theater.tid == CinemaSeat.tid)
            .filter(Booking.email == email)
            .order_by(Show.sdate, Show.sttime, Booking.bid, CinemaSeat.csid)
            .all()
        )
        return [
            {
                "booking_id": bid,
                "title": title,
                "date": sdate.isoformat(),
                "start_time": sttime.isoformat(),
                "theater": tname,
                "seat_number": sno,
            } for bid, title, sdate, sttime, tname, sno in rows
        ]


def _show_row(show: Show) -> Dict:
    return {
        "show_id": show.sid,
        "movie_id": show.mvid,
        "date": show.sdate.isoformat(),
        "start_time": show.sttime.isoformat(),
        "end_time": show.edtime.isoformat() if show.edtime else None,
    }
