from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Enum, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.database import Base
from src.models.base import TimestampMixin

if TYPE_CHECKING:
    from src.models.party import Client, Driver


class RideStatus(enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class LiveRide(Base, TimestampMixin):
    """Operational ride produced by promoting a booking."""

    __tablename__ = "rides"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[Optional[int]] = mapped_column(ForeignKey("clients.id"))
    driver_id: Mapped[Optional[int]] = mapped_column(ForeignKey("drivers.id"))
    origin: Mapped[str] = mapped_column(String(255), nullable=False)
    destination: Mapped[str] = mapped_column(String(255), nullable=False)
    origin_coordinates: Mapped[Optional[str]] = mapped_column(String(100))
    destination_coordinates: Mapped[Optional[str]] = mapped_column(String(100))
    status: Mapped[RideStatus] = mapped_column(
        Enum(RideStatus), default=RideStatus.pending, nullable=False
    )
    price: Mapped[float] = mapped_column(Float, default=0)
    distance: Mapped[float] = mapped_column(Float, default=0)
    duration: Mapped[float] = mapped_column(Float, default=0)
    tracking_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)

    client: Mapped[Optional["Client"]] = relationship()
    driver: Mapped[Optional["Driver"]] = relationship()

    def __repr__(self) -> str:
        return f"<LiveRide {self.tracking_code} ({self.status.value})>"
