"""HTTP entrypoint for the cinema ticketing backend."""

from flask import Flask, request, jsonify
from flask_cors import CORS
import logging
import os
from datetime import date, time, timedelta
from dotenv import load_dotenv
from typing import Any, Dict, List, Optional, Tuple

load_dotenv()
from database_manager import DatabaseManager
from booking_manager import BookingManager
from errors import TicketingError
from maintenance import MaintenanceSweeper
from payment_processor import PaymentProcessor
import reports

logging.basicConfig(level=os.getenv('LOG_LEVEL', 'INFO').upper())
logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = 'sqlite:///ticketmaster.db'


def bad_request(message: str, *, details: Optional[Dict[str, Any]] = None):
    """Return a uniform 400 payload, optionally including field-level details."""
    payload: Dict[str, Any] = {"error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), 400


def require_json_object() -> Tuple[Optional[Dict[str, Any]], Optional[Tuple[str, int]]]:
    """Ensure the request body is a JSON object before proceeding."""
    if not request.is_json:
        return None, bad_request("request body must be a JSON object")

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, bad_request("request body must be a JSON object")

    return data, None


def require_string(data: Dict[str, Any], field: str) -> Tuple[Optional[str], Optional[Tuple[str, int]]]:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        return None, bad_request(f"{field} must be a non-empty string")
    return value.strip(), None


def require_int(data: Dict[str, Any], field: str, *, minimum: int = 1) -> Tuple[Optional[int], Optional[Tuple[str, int]]]:
    value = data.get(field)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:  # Reject boolean masquerading as int
        return None, bad_request(f"{field} must be an integer >= {minimum}")
    return value, None


def optional_string(data: Dict[str, Any], field: str) -> Tuple[Optional[str], Optional[Tuple[str, int]]]:
    value = data.get(field)
    if value is None:
        return None, None
    if not isinstance(value, str):
        return None, bad_request(f"{field} must be a string")
    return value.strip() or None, None


def optional_int(data: Dict[str, Any], field: str, *, minimum: int = 1) -> Tuple[Optional[int], Optional[Tuple[str, int]]]:
    if data.get(field) is None:
        return None, None
    return require_int(data, field, minimum=minimum)


def parse_date(value: Any, field: str) -> Tuple[Optional[date], Optional[Tuple[str, int]]]:
    if not isinstance(value, str):
        return None, bad_request(f"{field} must be a YYYY-MM-DD date")
    try:
        return date.fromisoformat(value), None
    except ValueError:
        return None, bad_request(f"{field} must be a YYYY-MM-DD date")


def parse_time(value: Any, field: str) -> Tuple[Optional[time], Optional[Tuple[str, int]]]:
    if not isinstance(value, str):
        return None, bad_request(f"{field} must be an HH:MM[:SS] time")
    try:
        return time.fromisoformat(value), None
    except ValueError:
        return None, bad_request(f"{field} must be an HH:MM[:SS] time")


def validate_seat_numbers(seat_numbers: Any) -> Tuple[Optional[List[str]], Optional[Tuple[str, int]]]:
    """Validate seat numbers and return them trimmed; an absent list means no preference."""
    if seat_numbers is None:
        return [], None

    if not isinstance(seat_numbers, list):
        return None, bad_request("seat_numbers must be provided as a JSON array")

    normalized: List[str] = []
    for index, seat in enumerate(seat_numbers):
        if not isinstance(seat, str):
            return None, bad_request("each seat number must be a string", details={"index": index})
        trimmed = seat.strip()
        if not trimmed:
            return None, bad_request("seat_numbers must not contain empty strings", details={"index": index})
        normalized.append(trimmed)

    if len(set(normalized)) != len(normalized):
        return None, bad_request("seat_numbers must not contain duplicates")

    return normalized, None


def initialize_demo_show(db: DatabaseManager) -> Optional[int]:
    """Create an example cinema, theater and show so local demos have usable data."""
    if db.health_check().get("shows"):
        logger.info("ℹ️ Demo data skipped, shows already exist")
        return None

    demo_seats = [(f"{row}{num}", "premium" if row in "AB" else "standard")
                  for row in "ABCDE" for num in range(1, 11)]
    cid = db.add_cinema("Riverside Cinema", city="Riverside")
    tid = db.add_theater(cid, "Screen 1", demo_seats)
    mvid = db.add_movie("Love Actually", rdate=date(2003, 11, 14), duration=8100, lang="EN", genre="Romance")
    sid = db.schedule_show(
        mvid, tid,
        sdate=date.today() + timedelta(days=1),
        sttime=time(19, 0),
        edtime=time(21, 15),
        tier_prices={"standard": 1200, "premium": 1800}
    )
    logger.info(f"✅ Pre-initialized demo show {sid} in theater {tid} ({len(demo_seats)} seats)")
    return sid


def create_app(database_url: Optional[str] = None, db: Optional[DatabaseManager] = None) -> Flask:
    app = Flask(__name__)
    CORS(app)

    # One database layer per app so all request handlers reuse the same pool
    if db is None:
        db = DatabaseManager(
            database_url or os.getenv('DATABASE_URL', DEFAULT_DATABASE_URL),
            pool_size=int(os.getenv('DB_POOL_SIZE', 20)),
            max_overflow=int(os.getenv('DB_MAX_OVERFLOW', 40)),
            lock_timeout=float(os.getenv('DB_LOCK_TIMEOUT', 5))
        )
    bookings = BookingManager(db)
    payments = PaymentProcessor(db)
    sweeper = MaintenanceSweeper(db)
    app.extensions['ticketing_db'] = db

    @app.errorhandler(TicketingError)
    def handle_ticketing_error(error: TicketingError):
        log = logger.warning if error.retryable else logger.info
        log(f"{request.method} {request.path} rejected: {error.kind}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(ValueError)
    def handle_value_error(error: ValueError):
        return bad_request(str(error))

    @app.cli.command('seed-demo')
    def seed_demo():
        """Insert the demo cinema, theater and show."""
        initialize_demo_show(db)

    # API Endpoints

    @app.route('/users', methods=['POST'])
    def add_user():
        data, error_response = require_json_object()
        if error_response:
            return error_response

        fields = {}
        for field in ('email', 'fname', 'lname'):
            fields[field], error = require_string(data, field)
            if error:
                return error

        phone, error = optional_string(data, 'phone')
        if error:
            return error

        user = db.add_user(phone=phone, **fields)
        return jsonify(user), 201

    @app.route('/movies', methods=['POST'])
    def add_movie():
        data, error_response = require_json_object()
        if error_response:
            return error_response

        title, error = require_string(data, 'title')
        if error:
            return error

        rdate = None
        if data.get('release_date') is not None:
            rdate, error = parse_date(data['release_date'], 'release_date')
            if error:
                return error

        details = {}
        for field in ('country', 'description', 'lang', 'genre'):
            details[field], error = optional_string(data, field)
            if error:
                return error

        # Running time in seconds
        details['duration'], error = optional_int(data, 'duration')
        if error:
            return error

        mvid = db.add_movie(title, rdate=rdate, **details)
        return jsonify({"movie_id": mvid, "title": title}), 201

    @app.route('/cinemas', methods=['POST'])
    def add_cinema():
        data, error_response = require_json_object()
        if error_response:
            return error_response

        name, error = require_string(data, 'name')
        if error:
            return error

        city, error = optional_string(data, 'city')
        if error:
            return error

        cid = db.add_cinema(name, city=city)
        return jsonify({"cinema_id": cid, "name": name}), 201

    @app.route('/cinemas/<int:cid>/theaters', methods=['POST'])
    def add_theater(cid):
        data, error_response = require_json_object()
        if error_response:
            return error_response

        name, error = require_string(data, 'name')
        if error:
            return error

        seats_raw = data.get('seats')
        if not isinstance(seats_raw, list) or not seats_raw:
            return bad_request("seats must be a non-empty array of {seat_number, price_tier}")

        seats = []
        for index, seat in enumerate(seats_raw):
            if not isinstance(seat, dict):
                return bad_request("each seat must be an object", details={"index": index})
            sno, error = require_string(seat, 'seat_number')
            if error:
                return bad_request("seat_number must be a non-empty string", details={"index": index})
            tier, error = require_string(seat, 'price_tier')
            if error:
                return bad_request("price_tier must be a non-empty string", details={"index": index})
            seats.append((sno, tier))

        if len({sno for sno, _ in seats}) != len(seats):
            return bad_request("seat numbers must be unique within a theater")

        tid = db.add_theater(cid, name, seats)
        return jsonify({"theater_id": tid, "cinema_id": cid, "seat_count": len(seats)}), 201

    @app.route('/shows', methods=['POST'])
    def schedule_show():
        """Add a movie showing to an existing theater."""
        data, error_response = require_json_object()
        if error_response:
            return error_response

        mvid, error = require_int(data, 'movie_id')
        if error:
            return error
        tid, error = require_int(data, 'theater_id')
        if error:
            return error
        sdate, error = parse_date(data.get('date'), 'date')
        if error:
            return error
        sttime, error = parse_time(data.get('start_time'), 'start_time')
        if error:
            return error
        edtime = None
        if data.get('end_time') is not None:
            edtime, error = parse_time(data['end_time'], 'end_time')
            if error:
                return error

        tier_prices = data.get('tier_prices')
        if not isinstance(tier_prices, dict) or not tier_prices:
            return bad_request("tier_prices must map each price tier to an integer price")
        for tier, price in tier_prices.items():
            if isinstance(price, bool) or not isinstance(price, int) or price < 0:
                return bad_request("tier prices must be non-negative integers", details={"tier": tier})

        sid = db.schedule_show(mvid, tid, sdate, sttime, edtime, tier_prices)
        logger.info(f"Scheduled show {sid} for movie {mvid} in theater {tid}")
        return jsonify({"show_id": sid, "movie_id": mvid, "theater_id": tid}), 201

    @app.route('/shows/<int:sid>/seats', methods=['GET'])
    def get_show_status(sid):
        """Return the live seat summary for a show."""
        status = db.get_show_status(sid)
        status["remaining_capacity"] = bookings.remaining_capacity(sid)
        return jsonify(status)

    @app.route('/bookings', methods=['POST'])
    def create_booking():
        """Book seats for a show; the booking starts out Pending."""
        data, error_response = require_json_object()
        if error_response:
            return error_response

        email, error = require_string(data, 'email')
        if error:
            return error
        sid, error = require_int(data, 'show_id')
        if error:
            return error
        seat_count, error = require_int(data, 'seat_count')
        if error:
            return error
        seat_numbers, error = validate_seat_numbers(data.get('seat_numbers'))
        if error:
            return error

        result = bookings.create_booking(email, sid, seat_count, seat_numbers)
        return jsonify(result), 201

    @app.route('/bookings/<int:bid>', methods=['GET'])
    def get_booking(bid):
        return jsonify(bookings.get_booking(bid))

    @app.route('/bookings/<int:bid>/cancel', methods=['POST'])
    def cancel_booking(bid):
        return jsonify(bookings.cancel_booking(bid))

    @app.route('/bookings/<int:bid>/change-seat', methods=['POST'])
    def change_seat(bid):
        """Exchange one seat of a booking for a free seat of the same price tier."""
        data, error_response = require_json_object()
        if error_response:
            return error_response

        old_seat, error = require_string(data, 'seat_number')
        if error:
            return error
        new_seat, error = require_string(data, 'new_seat_number')
        if error:
            return error

        return jsonify(bookings.change_seats(bid, old_seat, new_seat))

    @app.route('/bookings/<int:bid>/payment', methods=['POST'])
    def record_payment(bid):
        data, error_response = require_json_object()
        if error_response:
            return error_response

        method, error = require_string(data, 'method')
        if error:
            return error
        amount = None
        if data.get('amount') is not None:
            amount, error = require_int(data, 'amount', minimum=0)
            if error:
                return error

        result = payments.record_payment(bid, method, amount)
        return jsonify(result), 201

    @app.route('/bookings/<int:bid>/payment', methods=['DELETE'])
    def remove_payment(bid):
        return jsonify(payments.remove_payment(bid))

    @app.route('/maintenance/cancel-pending', methods=['POST'])
    def cancel_pending():
        return jsonify({"cancelled": sweeper.cancel_all_pending()})

    @app.route('/maintenance/purge-cancelled', methods=['POST'])
    def purge_cancelled():
        return jsonify({"purged": sweeper.purge_cancelled()})

    @app.route('/maintenance/remove-shows', methods=['POST'])
    def remove_shows():
        data, error_response = require_json_object()
        if error_response:
            return error_response

        cid, error = require_int(data, 'cinema_id')
        if error:
            return error
        show_date, error = parse_date(data.get('date'), 'date')
        if error:
            return error

        return jsonify({"removed": sweeper.remove_shows_on(cid, show_date)})

    # Reporting

    @app.route('/reports/shows/<int:sid>/theaters', methods=['GET'])
    def theaters_playing_show(sid):
        return jsonify(reports.theaters_playing_show(db, sid))

    @app.route('/reports/shows', methods=['GET'])
    def shows_starting_at():
        sdate, error = parse_date(request.args.get('date'), 'date')
        if error:
            return error
        sttime, error = parse_time(request.args.get('time'), 'time')
        if error:
            return error
        return jsonify(reports.shows_starting_at(db, sdate, sttime))

    @app.route('/reports/movies', methods=['GET'])
    def movie_titles():
        fragment = request.args.get('contains', 'love')
        released_after, error = parse_date(request.args.get('released_after', '2010-12-31'), 'released_after')
        if error:
            return error
        return jsonify(reports.movie_titles_containing(db, fragment, released_after))

    @app.route('/reports/pending-users', methods=['GET'])
    def pending_users():
        return jsonify(reports.users_with_pending_booking(db))

    @app.route('/reports/movies/<int:mvid>/schedule', methods=['GET'])
    def movie_schedule(mvid):
        cid = request.args.get('cinema_id', type=int)
        if cid is None:
            return bad_request("cinema_id query parameter is required")
        start, error = parse_date(request.args.get('start'), 'start')
        if error:
            return error
        end, error = parse_date(request.args.get('end'), 'end')
        if error:
            return error
        return jsonify(reports.movie_schedule(db, mvid, cid, start, end))

    @app.route('/reports/users/<email>/bookings', methods=['GET'])
    def booking_history(email):
        return jsonify(reports.booking_history(db, email))

    @app.route('/health', methods=['GET'])
    def health_check():
        """Expose the database connectivity and show count."""
        return jsonify(db.health_check())

    return app


if __name__ == '__main__':
    app = create_app()
    initialize_demo_show(app.extensions['ticketing_db'])

    logger.info("""
    ================================
    CINEMA TICKETING SYSTEM
    ================================
    Concurrency: per-show row lock (SELECT FOR UPDATE) + compare-and-set seat claims
    ================================
    """)

    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=False, threaded=True)
