from __future__ import annotations

import re
from datetime import date, datetime
from typing import List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import update
from sqlalchemy.orm import Session

from src.exceptions import NotFoundError, ValidationError
from src.models.booking import Booking, BookingPriority, BookingStatus
from src.models.notification_log import NotificationType
from src.models.party import Client, Driver
from src.models.recurrence import RecurrencePattern
from src.notifications.dispatcher import NotificationDispatcher
from src.notifications.formatter import format_client_reminder
from src.notifications.phone import normalize_phone
from src.scheduler.recurrence import expand_recurrence, parse_recurrence_type, save_in_batches
from src.scheduler.timewindow import TimeWindowCalculator
from src.services.fare import FareEstimator, FlatRateFareEstimator

_WKT_POINT = re.compile(
    r"^\s*POINT\s*\(\s*(-?\d+(?:\.\d+)?)\s+(-?\d+(?:\.\d+)?)\s*\)\s*$", re.IGNORECASE
)

BOOKING_TRANSITIONS = {
    BookingStatus.pending: {
        BookingStatus.assigned,
        BookingStatus.confirmed,
        BookingStatus.promoted,
        BookingStatus.cancelled,
    },
    BookingStatus.confirmed: {BookingStatus.assigned, BookingStatus.cancelled},
    BookingStatus.assigned: {
        BookingStatus.assigned,
        BookingStatus.confirmed,
        BookingStatus.promoted,
        BookingStatus.cancelled,
    },
    BookingStatus.promoted: {BookingStatus.completed},
    BookingStatus.completed: set(),
    BookingStatus.cancelled: set(),
}


class Coordinates(BaseModel):
    lat: float
    lng: float


class RecurrenceRequest(BaseModel):
    type: str
    end_date: Optional[date] = None
    days_of_week: List[int] = Field(default_factory=list)


class BookingRequest(BaseModel):
    client_id: Optional[int] = None
    driver_id: Optional[int] = None
    client_name: str
    client_phone: str
    pickup_location: str
    pickup_coordinates: Coordinates
    destination: str
    destination_coordinates: Coordinates
    scheduled_at: datetime
    estimated_duration: float  # minutes
    priority: BookingPriority = BookingPriority.normal
    recurring: Optional[RecurrenceRequest] = None
    recurrent_price: Optional[float] = None
    notes: Optional[str] = None


def to_wkt(coordinates: Coordinates) -> str:
    return f"POINT({coordinates.lng} {coordinates.lat})"


def parse_point(wkt: str) -> Tuple[float, float]:
    """Parse ``POINT(lng lat)`` into a (longitude, latitude) tuple."""
    match = _WKT_POINT.match(wkt or "")
    if not match:
        raise ValidationError(f"Invalid coordinate format: {wkt!r}")
    return float(match.group(1)), float(match.group(2))


def assert_valid_transition(current: BookingStatus, target: BookingStatus) -> None:
    allowed = BOOKING_TRANSITIONS.get(current, set())
    if not allowed:
        raise ValidationError(f"Booking is already in terminal status: {current.value}")
    if target not in allowed:
        raise ValidationError(f"Cannot move booking from {current.value} to {target.value}")


def _get_booking(session: Session, booking_id: int) -> Booking:
    booking = session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError(f"Scheduled ride {booking_id} not found")
    return booking


def _get_driver(session: Session, driver_id: int) -> Driver:
    driver = session.get(Driver, driver_id)
    if driver is None:
        raise NotFoundError(f"Driver {driver_id} not found")
    return driver


def _resolve_client(session: Session, request: BookingRequest, phone: str) -> Client:
    if request.client_id is not None:
        client = session.get(Client, request.client_id)
        if client is None:
            raise NotFoundError(f"Client {request.client_id} not found")
        return client

    client = session.query(Client).filter_by(phone_number=phone).first()
    if client is None:
        client = Client(first_name=request.client_name, last_name="", phone_number=phone)
        session.add(client)
        session.flush()
        logger.info(f"Created client {client.id} for {phone}")
    return client


def create_booking(
    session: Session,
    request: BookingRequest,
    created_by_id: Optional[int] = None,
    fare_estimator: Optional[FareEstimator] = None,
    calculator: Optional[TimeWindowCalculator] = None,
) -> Booking:
    """Create a booking and, for recurring requests, all of its occurrences.

    Returns:
        The anchor booking. Occurrences share its recurrence_id.
    """
    if request.scheduled_at.tzinfo is None:
        raise ValidationError("scheduled_at must include a UTC offset")
    phone = normalize_phone(request.client_phone)
    if not phone:
        raise ValidationError(f"Invalid client phone: {request.client_phone!r}")

    fare_estimator = fare_estimator or FlatRateFareEstimator()
    calculator = calculator or TimeWindowCalculator()

    recurrence_type = parse_recurrence_type(request.recurring.type) if request.recurring else None
    client = _resolve_client(session, request, phone)
    driver = _get_driver(session, request.driver_id) if request.driver_id is not None else None

    pickup = to_wkt(request.pickup_coordinates)
    cost = round(fare_estimator.estimate(pickup, request.estimated_duration), 2)

    pattern = None
    if recurrence_type is not None:
        pattern = RecurrencePattern(
            type=recurrence_type,
            start_date=calculator.to_local(request.scheduled_at).date(),
            end_date=request.recurring.end_date,
            days_of_week=list(request.recurring.days_of_week),
        )
        session.add(pattern)
        session.flush()

    booking = Booking(
        client_id=client.id,
        client_name=client.first_name,
        client_phone=phone,
        driver_id=driver.id if driver else None,
        pickup_location=request.pickup_location,
        pickup_coordinates=pickup,
        destination=request.destination,
        destination_coordinates=to_wkt(request.destination_coordinates),
        scheduled_at=request.scheduled_at,
        estimated_duration=round(request.estimated_duration, 2),
        estimated_cost=cost,
        status=BookingStatus.assigned if driver else BookingStatus.pending,
        priority=request.priority,
        notes=request.notes,
        created_by_id=created_by_id,
        recurrence_id=pattern.id if pattern else None,
        recurrent_price=(
            round(request.recurrent_price, 2) if request.recurrent_price is not None else None
        ),
    )
    session.add(booking)
    session.commit()
    logger.info(f"Created booking {booking.id} for {phone} at {booking.scheduled_at}")

    if pattern is not None:
        occurrences = expand_recurrence(pattern, booking, calculator)
        saved = save_in_batches(session, occurrences)
        logger.info(f"Booking {booking.id}: created {saved} recurring occurrences")

    return booking


def _allowed_sources(target: BookingStatus) -> List[BookingStatus]:
    return [status for status, targets in BOOKING_TRANSITIONS.items() if target in targets]


def _guarded_update(
    session: Session, booking: Booking, target: BookingStatus, *criteria, **values
) -> None:
    """Move ``booking`` to ``target`` only if the stored status still allows it.

    The check runs inside the UPDATE, so a promotion committed after the row
    was loaded makes this fail with ValidationError instead of being undone.
    """
    booking_id = booking.id
    result = session.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status.in_(_allowed_sources(target)),
            *criteria,
        )
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        raise ValidationError(f"Booking {booking_id} can no longer be moved to {target.value}")
    session.commit()
    session.refresh(booking)


def assign_driver(session: Session, booking_id: int, driver_id: int) -> Booking:
    booking = _get_booking(session, booking_id)
    assert_valid_transition(booking.status, BookingStatus.assigned)
    driver = _get_driver(session, driver_id)

    _guarded_update(session, booking, BookingStatus.assigned, driver_id=driver.id)
    logger.info(f"Driver {driver.id} assigned to booking {booking.id}")
    return booking


def unassign_driver(session: Session, booking_id: int) -> Booking:
    booking = _get_booking(session, booking_id)
    if booking.driver_id is None:
        raise ValidationError(f"Booking {booking_id} has no assigned driver")
    assert_valid_transition(booking.status, BookingStatus.confirmed)

    _guarded_update(
        session, booking, BookingStatus.confirmed, Booking.driver_id.isnot(None), driver_id=None
    )
    logger.info(f"Driver removed from booking {booking.id}")
    return booking


def cancel_booking(session: Session, booking_id: int) -> Booking:
    booking = _get_booking(session, booking_id)
    assert_valid_transition(booking.status, BookingStatus.cancelled)

    _guarded_update(session, booking, BookingStatus.cancelled)
    logger.info(f"Booking {booking.id} cancelled")
    return booking


def notify_client(
    session: Session,
    booking_id: int,
    dispatcher: Optional[NotificationDispatcher] = None,
    calculator: Optional[TimeWindowCalculator] = None,
) -> bool:
    """Send the client a reminder of their booking on demand.

    Returns:
        True if a channel delivered the reminder.

    Raises:
        NotFoundError: unknown booking.
        ValidationError: the booking has no client phone number.
    """
    booking = _get_booking(session, booking_id)
    if not normalize_phone(booking.client_phone):
        raise ValidationError(f"Booking {booking_id} does not have a client phone number")

    calculator = calculator or TimeWindowCalculator()
    dispatcher = dispatcher or NotificationDispatcher(session)
    delivered = dispatcher.send(
        booking.client_phone,
        format_client_reminder(booking, calculator),
        notification_type=NotificationType.client_reminder,
        reference_id=booking.id,
    )
    if delivered:
        logger.info(f"Client reminder sent for booking {booking_id}")
    else:
        logger.warning(f"Client reminder for booking {booking_id} was not delivered")
    return delivered
