from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.db.database import Base


class NotificationType(enum.Enum):
    daily_reminder = "daily_reminder"
    upcoming_alert = "upcoming_alert"
    ride_activated = "ride_activated"
    client_reminder = "client_reminder"


class NotificationChannel(enum.Enum):
    whatsapp = "whatsapp"
    sms = "sms"


class NotificationLog(Base):
    """One row per dispatch outcome; channel is empty when nothing delivered."""

    __tablename__ = "notification_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    notification_type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType), nullable=False
    )
    reference_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    recipient: Mapped[str] = mapped_column(String(30), nullable=False)
    channel: Mapped[Optional[NotificationChannel]] = mapped_column(Enum(NotificationChannel))
    delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        via = self.channel.value if self.channel else "none"
        return (
            f"<NotificationLog {self.notification_type.value} "
            f"ref={self.reference_id} via {via}>"
        )
