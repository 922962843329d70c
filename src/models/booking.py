from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.database import Base
from src.models.base import TimestampMixin, UTCDateTime

if TYPE_CHECKING:
    from src.models.party import Client, Driver
    from src.models.recurrence import RecurrencePattern
    from src.models.ride import LiveRide


class BookingStatus(enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    assigned = "assigned"
    promoted = "promoted"  # turned into a live ride
    completed = "completed"  # the live ride finished
    cancelled = "cancelled"


class BookingPriority(enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


# Statuses the scheduler acts on
ACTIVE_STATUSES = (BookingStatus.pending, BookingStatus.assigned)
TERMINAL_STATUSES = (BookingStatus.promoted, BookingStatus.completed, BookingStatus.cancelled)


class Booking(Base, TimestampMixin):
    __tablename__ = "scheduled_rides"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[Optional[int]] = mapped_column(ForeignKey("clients.id"))
    client_name: Mapped[str] = mapped_column(String(100), default="")
    client_phone: Mapped[str] = mapped_column(String(30), default="")
    driver_id: Mapped[Optional[int]] = mapped_column(ForeignKey("drivers.id"), index=True)
    pickup_location: Mapped[str] = mapped_column(String(255), nullable=False)
    pickup_coordinates: Mapped[Optional[str]] = mapped_column(String(100))
    destination: Mapped[str] = mapped_column(String(255), nullable=False)
    destination_coordinates: Mapped[Optional[str]] = mapped_column(String(100))
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    estimated_duration: Mapped[Optional[float]] = mapped_column(Float)  # minutes
    estimated_cost: Mapped[Optional[float]] = mapped_column(Float)
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus), default=BookingStatus.pending, nullable=False, index=True
    )
    priority: Mapped[BookingPriority] = mapped_column(
        Enum(BookingPriority), default=BookingPriority.normal, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by_id: Mapped[Optional[int]] = mapped_column(Integer)
    ride_id: Mapped[Optional[int]] = mapped_column(ForeignKey("rides.id"), unique=True)
    recurrence_id: Mapped[Optional[int]] = mapped_column(ForeignKey("recurring_rides.id"))
    recurrent_price: Mapped[Optional[float]] = mapped_column(Float)

    client: Mapped[Optional["Client"]] = relationship()
    driver: Mapped[Optional["Driver"]] = relationship()
    ride: Mapped[Optional["LiveRide"]] = relationship()
    recurrence: Mapped[Optional["RecurrencePattern"]] = relationship(back_populates="bookings")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Booking {self.id} at {self.scheduled_at} ({self.status.value})>"
