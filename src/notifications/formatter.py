from __future__ import annotations

from typing import Dict

from src.config import get_settings
from src.models.booking import Booking
from src.models.party import Driver
from src.models.ride import LiveRide
from src.scheduler.timewindow import TimeWindowCalculator


def _sign_off() -> str:
    return f"_{get_settings().brand_name} - your ride partner_"


def format_daily_reminder(
    driver: Driver, booking: Booking, calculator: TimeWindowCalculator
) -> Dict[str, str]:
    """Reminder sent the night before a booking.

    Returns:
        dict with keys "whatsapp" (rich text) and "sms" (short plain text).
    """
    brand = get_settings().brand_name
    pickup_time = calculator.format_time(booking.scheduled_at)
    until = calculator.time_until(booking.scheduled_at)
    zone = calculator.tz_name

    whatsapp = "\n".join(
        [
            f"*{brand} reminder*",
            "",
            f"Hi {driver.first_name}!",
            "",
            "You have a scheduled ride tomorrow:",
            "",
            f"*Time:* {pickup_time} ({zone})",
            f"*Pickup:* {booking.pickup_location}",
            f"*Destination:* {booking.destination}",
            f"*Client:* {booking.client_name}",
            f"*Starts in:* {until.hours}h {until.minutes}m",
            "",
            "Please be ready on time!",
            "",
            _sign_off(),
        ]
    )
    sms = (
        f"{brand} reminder: ride tomorrow at {pickup_time} ({zone}). "
        f"Pickup: {booking.pickup_location}. Client: {booking.client_name}. "
        f"In {until.hours}h {until.minutes}m"
    )
    return {"whatsapp": whatsapp, "sms": sms}


def format_upcoming_alert(
    driver: Driver, booking: Booking, calculator: TimeWindowCalculator
) -> Dict[str, str]:
    """Alert sent shortly before pickup time."""
    brand = get_settings().brand_name
    pickup_time = calculator.format_time(booking.scheduled_at)
    until = calculator.time_until(booking.scheduled_at)
    total_minutes = until.hours * 60 + until.minutes

    whatsapp = "\n".join(
        [
            "*Ride alert!*",
            "",
            f"Hi {driver.first_name}!",
            "",
            f"Your scheduled ride starts in {total_minutes} minutes:",
            "",
            f"*Time:* {pickup_time} ({calculator.tz_name})",
            f"*Pickup:* {booking.pickup_location}",
            f"*Client:* {booking.client_name}",
            "",
            "Get ready to leave!",
            "",
            _sign_off(),
        ]
    )
    sms = (
        f"{brand}: your ride starts in {total_minutes} min at {pickup_time}. "
        f"Pickup: {booking.pickup_location}"
    )
    return {"whatsapp": whatsapp, "sms": sms}


def format_ride_activated(driver: Driver, booking: Booking, ride: LiveRide) -> Dict[str, str]:
    """Notice sent to the driver once a booking has been promoted."""
    brand = get_settings().brand_name
    client_name = booking.client_name or "Client"
    client_phone = booking.client_phone or "not available"

    whatsapp = "\n".join(
        [
            "*Ride activated!*",
            "",
            f"Hi {driver.first_name}!",
            "",
            "Your scheduled ride is now active:",
            "",
            f"*Pickup:* {ride.origin}",
            f"*Destination:* {ride.destination}",
            f"*Client:* {client_name}",
            f"*Phone:* {client_phone}",
            f"*Tracking code:* {ride.tracking_code}",
            "",
            "Head to the pickup point now.",
            "",
            _sign_off(),
        ]
    )
    sms = (
        f"{brand}: ride {ride.tracking_code} is active. "
        f"Go to {ride.origin}. Client: {client_name} {client_phone}"
    )
    return {"whatsapp": whatsapp, "sms": sms}


def format_client_reminder(booking: Booking, calculator: TimeWindowCalculator) -> Dict[str, str]:
    """Manual reminder sent to the client from the booking screen."""
    brand = get_settings().brand_name
    when = calculator.format_local(booking.scheduled_at, "%Y-%m-%d %I:%M %p")

    whatsapp = "\n".join(
        [
            f"*{brand} reminder*",
            "",
            "Your scheduled ride:",
            "",
            f"*When:* {when} ({calculator.tz_name})",
            f"*From:* {booking.pickup_location}",
            f"*To:* {booking.destination}",
            "",
            _sign_off(),
        ]
    )
    sms = (
        f"{brand} reminder: your ride from {booking.pickup_location} "
        f"to {booking.destination} at {when}."
    )
    return {"whatsapp": whatsapp, "sms": sms}
