from __future__ import annotations

from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, joinedload

from src.config import get_settings
from src.models.booking import ACTIVE_STATUSES, Booking
from src.models.notification_log import NotificationType
from src.models.ride import LiveRide
from src.notifications.dispatcher import NotificationDispatcher
from src.notifications.formatter import format_daily_reminder, format_upcoming_alert
from src.scheduler.promotion import PromotionEngine
from src.scheduler.timewindow import TimeWindowCalculator

settings = get_settings()

# 同步版本的資料庫連線（給排程使用）
sync_database_url = settings.database_url.replace("+aiosqlite", "")


@lru_cache
def _sync_engine() -> Engine:
    return create_engine(sync_database_url)


def get_sync_session() -> Session:
    return Session(_sync_engine())


def _calculator(now: Optional[datetime] = None) -> TimeWindowCalculator:
    clock = (lambda: now) if now is not None else None
    return TimeWindowCalculator(settings.timezone, clock=clock)


def find_active_bookings(
    session: Session, start: datetime, end: datetime, include_end: bool = True
) -> List[Booking]:
    """Bookings with a driver, still pending/assigned, scheduled in [start, end]."""
    upper = Booking.scheduled_at <= end if include_end else Booking.scheduled_at < end
    return (
        session.query(Booking)
        .options(joinedload(Booking.driver))
        .filter(
            Booking.scheduled_at >= start,
            upper,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.driver_id.isnot(None),
        )
        .order_by(Booking.scheduled_at)
        .all()
    )


def send_daily_reminders(now: Optional[datetime] = None) -> Dict[str, int]:
    """每晚提醒：通知司機明天（當地時間）的預約行程"""
    results = {"total": 0, "sent": 0, "failed": 0}
    try:
        calculator = _calculator(now)
        start, end = calculator.start_of_next_local_day()
        logger.info(
            f"Daily reminders ({calculator.tz_name}): bookings between "
            f"{calculator.format_local(start)} and {calculator.format_local(end)}"
        )

        with get_sync_session() as session:
            bookings = find_active_bookings(session, start, end, include_end=False)
            results["total"] = len(bookings)
            if not bookings:
                logger.info("No scheduled rides for tomorrow")
                return results

            dispatcher = NotificationDispatcher(session)
            for booking in bookings:
                try:
                    message = format_daily_reminder(booking.driver, booking, calculator)
                    delivered = dispatcher.send(
                        booking.driver.phone_number,
                        message,
                        notification_type=NotificationType.daily_reminder,
                        reference_id=booking.id,
                    )
                except Exception as e:
                    delivered = False
                    logger.error(f"Error sending reminder for booking {booking.id}: {e}")
                results["sent" if delivered else "failed"] += 1

        logger.info(
            f"Daily reminders completed: {results['sent']} sent, "
            f"{results['failed']} failed of {results['total']}"
        )
    except Exception as e:
        logger.error(f"Daily reminder job failed: {e}")
    return results


@lru_cache
def notification_executor() -> ThreadPoolExecutor:
    return ThreadPoolExecutor(
        max_workers=settings.notification_workers, thread_name_prefix="notify"
    )


def send_activation_notice(booking_id: int, ride_id: int) -> None:
    """Tell the driver of one promoted booking that the ride is live, in its own session."""
    try:
        with get_sync_session() as session:
            booking = session.get(Booking, booking_id)
            ride = session.get(LiveRide, ride_id)
            PromotionEngine(session, NotificationDispatcher(session)).notify_activation(
                booking, ride
            )
    except Exception as e:
        logger.error(f"Error notifying activation of booking {booking_id}: {e}")


def process_scheduled_rides(
    now: Optional[datetime] = None, executor: Optional[Executor] = None
) -> Dict[str, int]:
    """每分鐘：將到期的預約轉為進行中的行程"""
    results = {"total": 0, "promoted": 0, "skipped": 0, "failed": 0}
    promoted: List[Tuple[int, int]] = []
    try:
        calculator = _calculator(now)
        start, end = calculator.window(calculator.now(), settings.promotion_window_minutes)

        with get_sync_session() as session:
            booking_ids = [b.id for b in find_active_bookings(session, start, end)]
            results["total"] = len(booking_ids)
            if not booking_ids:
                # Runs every minute; stay quiet when idle
                return results

            logger.info(
                f"Promoting {len(booking_ids)} due bookings "
                f"({calculator.format_local(calculator.now())})"
            )
            engine = PromotionEngine(session)

            for booking_id in booking_ids:
                try:
                    ride = engine.promote(booking_id)
                except Exception as e:
                    results["failed"] += 1
                    logger.error(f"Error promoting booking {booking_id}: {e}")
                    continue
                if ride is None:
                    results["skipped"] += 1
                else:
                    results["promoted"] += 1
                    promoted.append((booking_id, ride.id))

        # Notices go to the pool so channel timeouts never hold up the next tick
        executor = executor or notification_executor()
        for booking_id, ride_id in promoted:
            executor.submit(send_activation_notice, booking_id, ride_id)

        logger.info(
            f"Promotion tick completed: {results['promoted']} promoted, "
            f"{results['skipped']} skipped, {results['failed']} failed"
        )
    except Exception as e:
        logger.error(f"Promotion job failed: {e}")
    return results


def send_upcoming_ride_alerts(now: Optional[datetime] = None) -> Dict[str, int]:
    """每 5 分鐘：對即將開始的預約發送提醒"""
    results = {"total": 0, "sent": 0, "failed": 0}
    try:
        calculator = _calculator(now)
        current = calculator.now()

        with get_sync_session() as session:
            bookings: Dict[int, Booking] = {}
            for lookahead in settings.upcoming_alert_lookaheads:
                start, end = calculator.window(
                    current + timedelta(minutes=lookahead),
                    settings.upcoming_alert_margin_minutes,
                )
                for booking in find_active_bookings(session, start, end):
                    bookings.setdefault(booking.id, booking)

            results["total"] = len(bookings)
            if not bookings:
                return results

            logger.info(f"Sending upcoming alerts for {len(bookings)} bookings")
            dispatcher = NotificationDispatcher(session)
            for booking in bookings.values():
                try:
                    message = format_upcoming_alert(booking.driver, booking, calculator)
                    delivered = dispatcher.send(
                        booking.driver.phone_number,
                        message,
                        notification_type=NotificationType.upcoming_alert,
                        reference_id=booking.id,
                    )
                except Exception as e:
                    delivered = False
                    logger.error(f"Error sending alert for booking {booking.id}: {e}")
                results["sent" if delivered else "failed"] += 1

        logger.info(
            f"Upcoming alerts completed: {results['sent']} sent, {results['failed']} failed"
        )
    except Exception as e:
        logger.error(f"Upcoming alert job failed: {e}")
    return results
