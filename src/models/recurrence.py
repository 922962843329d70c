from __future__ import annotations

import enum
from datetime import date
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON, Date, Enum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.database import Base
from src.models.base import TimestampMixin

if TYPE_CHECKING:
    from src.models.booking import Booking


class RecurrenceType(enum.Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


class RecurrencePattern(Base, TimestampMixin):
    __tablename__ = "recurring_rides"

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[RecurrenceType] = mapped_column(Enum(RecurrenceType), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    # 0 = Sunday ... 6 = Saturday
    days_of_week: Mapped[List[int]] = mapped_column(JSON, default=list)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="recurrence")

    def __repr__(self) -> str:
        return f"<RecurrencePattern {self.id} {self.type.value} {self.start_date}..{self.end_date}>"
