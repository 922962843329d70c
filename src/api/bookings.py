from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Query
from loguru import logger
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.db.database import get_db
from src.exceptions import ValidationError
from src.models.booking import TERMINAL_STATUSES, Booking
from src.services.bookings import parse_point

router = APIRouter(prefix="/api", tags=["bookings"])


class UpcomingBookingResponse(BaseModel):
    id: int
    scheduled_at: str
    status: str
    priority: str
    pickup_location: str
    pickup_lng: Optional[float] = None
    pickup_lat: Optional[float] = None
    destination: str
    client_name: str
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None


def _pickup_point(booking: Booking) -> Tuple[Optional[float], Optional[float]]:
    if not booking.pickup_coordinates:
        return None, None
    try:
        return parse_point(booking.pickup_coordinates)
    except ValidationError:
        logger.warning(
            f"Booking {booking.id} has malformed pickup coordinates: {booking.pickup_coordinates!r}"
        )
        return None, None


@router.get("/bookings/upcoming")
async def list_upcoming_bookings(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Booking)
        .options(selectinload(Booking.driver))
        .where(
            Booking.scheduled_at > datetime.now(timezone.utc),
            Booking.status.notin_(TERMINAL_STATUSES),
        )
        .order_by(Booking.scheduled_at.asc())
        .limit(limit)
    )
    bookings = result.scalars().all()

    items = []
    for b in bookings:
        lng, lat = _pickup_point(b)
        items.append(
            UpcomingBookingResponse(
                id=b.id,
                scheduled_at=b.scheduled_at.isoformat(),
                status=b.status.value,
                priority=b.priority.value,
                pickup_location=b.pickup_location,
                pickup_lng=lng,
                pickup_lat=lat,
                destination=b.destination,
                client_name=b.client_name,
                driver_name=b.driver.full_name if b.driver else None,
                driver_phone=b.driver.phone_number if b.driver else None,
            )
        )
    return {"items": items}
