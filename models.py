"""ORM model definitions describing the cinema ticketing schema."""

from sqlalchemy import (
    Column, Integer, String, Date, Time, DateTime, Enum, ForeignKey, Index,
    Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone
import enum

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


class BookingStatus(str, enum.Enum):
    """Enumerated booking lifecycle states persisted in the database."""
    PENDING = 'Pending'
    PAID = 'Paid'
    CANCELLED = 'Cancelled'


class User(Base):
    __tablename__ = 'users'

    email = Column(String(128), primary_key=True)
    fname = Column(String(64), nullable=False)
    lname = Column(String(64), nullable=False)
    phone = Column(String(32))

    bookings = relationship('Booking', back_populates='user')


class Movie(Base):
    __tablename__ = 'movies'

    mvid = Column(Integer, primary_key=True)
    title = Column(String(256), nullable=False)
    rdate = Column(Date)
    country = Column(String(64))
    description = Column(Text)
    duration = Column(Integer)  # seconds
    lang = Column(String(8))
    genre = Column(String(64))

    shows = relationship('Show', back_populates='movie')


class Cinema(Base):
    __tablename__ = 'cinemas'

    cid = Column(Integer, primary_key=True)
    cname = Column(String(128), nullable=False)
    tnum = Column(Integer, default=0, nullable=False)
    city = Column(String(64))

    theaters = relationship('Theater', back_populates='cinema', cascade='all, delete-orphan')


class Theater(Base):
    __tablename__ = 'theaters'

    tid = Column(Integer, primary_key=True)
    cid = Column(Integer, ForeignKey('cinemas.cid', ondelete='CASCADE'), nullable=False)
    tname = Column(String(128), nullable=False)
    tseats = Column(Integer, nullable=False)

    cinema = relationship('Cinema', back_populates='theaters')
    seats = relationship('CinemaSeat', back_populates='theater', cascade='all, delete-orphan')

    __table_args__ = (
        Index('idx_theaters_cinema', 'cid'),
    )


class Show(Base):
    __tablename__ = 'shows'

    sid = Column(Integer, primary_key=True)
    mvid = Column(Integer, ForeignKey('movies.mvid'), nullable=False)
    sdate = Column(Date, nullable=False)
    sttime = Column(Time, nullable=False)
    edtime = Column(Time)

    movie = relationship('Movie', back_populates='shows')
    plays = relationship('Play', back_populates='show')
    seats = relationship('ShowSeat', back_populates='show')

    __table_args__ = (
        Index('idx_shows_date', 'sdate'),
    )


class Play(Base):
    """Scheduling link between a show and the theater it runs in."""
    __tablename__ = 'plays'

    sid = Column(Integer, ForeignKey('shows.sid'), primary_key=True)
    tid = Column(Integer, ForeignKey('theaters.tid'), primary_key=True)

    show = relationship('Show', back_populates='plays')
    theater = relationship('Theater')


class CinemaSeat(Base):
    __tablename__ = 'cinema_seats'

    csid = Column(Integer, primary_key=True)
    tid = Column(Integer, ForeignKey('theaters.tid', ondelete='CASCADE'), nullable=False)
    sno = Column(String(16), nullable=False)
    price_tier = Column(String(32), nullable=False)

    theater = relationship('Theater', back_populates='seats')

    __table_args__ = (
        UniqueConstraint('tid', 'sno', name='uq_cinema_seats_theater_sno'),
    )


class ShowSeat(Base):
    """Per-show assignment of one theater seat; bid is NULL while the seat is free."""
    __tablename__ = 'show_seats'

    sid = Column(Integer, ForeignKey('shows.sid'), primary_key=True)
    csid = Column(Integer, ForeignKey('cinema_seats.csid'), primary_key=True)
    bid = Column(Integer, ForeignKey('bookings.bid'))
    price = Column(Integer, nullable=False)

    show = relationship('Show', back_populates='seats')
    seat = relationship('CinemaSeat')
    booking = relationship('Booking', back_populates='show_seats')

    __table_args__ = (
        Index('idx_show_seats_booking', 'bid'),
    )


class Booking(Base):
    __tablename__ = 'bookings'

    bid = Column(Integer, primary_key=True)
    status = Column(Enum(BookingStatus, name='booking_status_enum'),
                    default=BookingStatus.PENDING, nullable=False)
    bdatetime = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    seats = Column(Integer, nullable=False)
    # Nulled when the show is removed; the booking is cancelled first.
    sid = Column(Integer, ForeignKey('shows.sid'))
    email = Column(String(128), ForeignKey('users.email'), nullable=False)

    user = relationship('User', back_populates='bookings')
    show = relationship('Show')
    show_seats = relationship('ShowSeat', back_populates='booking')
    payments = relationship('Payment', back_populates='booking')

    __table_args__ = (
        Index('idx_bookings_status', 'status'),
        Index('idx_bookings_show', 'sid'),
    )


class Payment(Base):
    __tablename__ = 'payments'

    pid = Column(Integer, primary_key=True)
    bid = Column(Integer, ForeignKey('bookings.bid', ondelete='CASCADE'), nullable=False)
    pmethod = Column(String(32), nullable=False)
    pdatetime = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    amount = Column(Integer, nullable=False)
    trid = Column(Integer, nullable=False)

    booking = relationship('Booking', back_populates='payments')

    __table_args__ = (
        Index('idx_payments_booking', 'bid'),
    )
