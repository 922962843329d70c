"""Promotion of due bookings into live rides.

A booking is claimed with a conditional UPDATE on its status, and the live
ride is created in the same transaction. Whichever tick or process instance
wins the UPDATE creates the ride; everyone else sees zero affected rows and
backs off, so a booking never yields two rides.
"""
from __future__ import annotations

import random
import time
from typing import Callable, Optional

from loguru import logger
from sqlalchemy import update
from sqlalchemy.orm import Session

from src.exceptions import ConsistencyError
from src.models.booking import ACTIVE_STATUSES, Booking, BookingStatus
from src.models.notification_log import NotificationType
from src.models.party import Driver, DriverStatus
from src.models.ride import LiveRide, RideStatus
from src.notifications.dispatcher import NotificationDispatcher
from src.notifications.formatter import format_ride_activated

TRACKING_CODE_ATTEMPTS = 5


def generate_tracking_code() -> str:
    """``SR`` + last 6 digits of the epoch millis + 3 random digits."""
    timestamp = str(int(time.time() * 1000))[-6:]
    return f"SR{timestamp}{random.randint(0, 999):03d}"


class PromotionEngine:
    def __init__(
        self,
        session: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        tracking_code_factory: Callable[[], str] = generate_tracking_code,
    ):
        self.session = session
        self.dispatcher = dispatcher
        self.tracking_code_factory = tracking_code_factory

    def _claim(self, booking_id: int) -> bool:
        result = self.session.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.in_(ACTIVE_STATUSES))
            .values(status=BookingStatus.promoted)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _unique_tracking_code(self) -> str:
        for _ in range(TRACKING_CODE_ATTEMPTS):
            code = self.tracking_code_factory()
            taken = self.session.query(LiveRide.id).filter_by(tracking_code=code).first()
            if taken is None:
                return code
        raise RuntimeError(f"Could not generate a unique tracking code in {TRACKING_CODE_ATTEMPTS} attempts")

    def _check_not_promotable(self, booking_id: int) -> None:
        booking = self.session.get(Booking, booking_id, populate_existing=True)
        if booking is None:
            logger.info(f"Booking {booking_id} no longer exists, skipping promotion")
            return
        if booking.status == BookingStatus.promoted and booking.ride_id is None:
            raise ConsistencyError(f"Booking {booking_id} is promoted but has no live ride")
        logger.info(
            f"Booking {booking_id} is {booking.status.value}, already handled, skipping"
        )

    def promote(self, booking_id: int) -> Optional[LiveRide]:
        """Turn a due booking into a live ride.

        Returns:
            The new LiveRide, or None if the booking was cancelled or already
            promoted by a concurrent run.

        Raises:
            ConsistencyError: the booking is marked promoted without a ride.
        """
        try:
            if not self._claim(booking_id):
                self.session.rollback()
                self._check_not_promotable(booking_id)
                return None

            booking = self.session.get(Booking, booking_id, populate_existing=True)
            ride = LiveRide(
                client_id=booking.client_id,
                driver_id=booking.driver_id,
                origin=booking.pickup_location,
                destination=booking.destination,
                origin_coordinates=booking.pickup_coordinates,
                destination_coordinates=booking.destination_coordinates,
                status=RideStatus.in_progress,
                price=float(booking.estimated_cost or 0),
                distance=0,
                duration=float(booking.estimated_duration or 0),
                tracking_code=self._unique_tracking_code(),
            )
            self.session.add(ride)
            self.session.flush()
            booking.ride_id = ride.id

            if booking.driver_id is not None:
                driver = self.session.get(Driver, booking.driver_id)
                if driver is not None:
                    driver.status = DriverStatus.on_the_way

            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.error(f"Promotion of booking {booking_id} rolled back")
            raise

        logger.info(f"Booking {booking_id} promoted to ride {ride.id} ({ride.tracking_code})")
        return ride

    def notify_activation(self, booking: Booking, ride: LiveRide) -> bool:
        """Tell the assigned driver the ride is live. Never raises on channel errors."""
        driver = booking.driver
        if driver is None:
            logger.warning(f"Booking {booking.id} has no driver to notify")
            return False
        dispatcher = self.dispatcher or NotificationDispatcher(self.session)
        message = format_ride_activated(driver, booking, ride)
        return dispatcher.send(
            driver.phone_number,
            message,
            notification_type=NotificationType.ride_activated,
            reference_id=booking.id,
        )
