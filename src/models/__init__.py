from src.models.booking import Booking, BookingPriority, BookingStatus
from src.models.notification_log import (
    NotificationChannel,
    NotificationLog,
    NotificationType,
)
from src.models.party import Client, Driver, DriverStatus
from src.models.recurrence import RecurrencePattern, RecurrenceType
from src.models.ride import LiveRide, RideStatus

__all__ = [
    "Booking",
    "BookingPriority",
    "BookingStatus",
    "Client",
    "Driver",
    "DriverStatus",
    "LiveRide",
    "NotificationChannel",
    "NotificationLog",
    "NotificationType",
    "RecurrencePattern",
    "RecurrenceType",
    "RideStatus",
]
