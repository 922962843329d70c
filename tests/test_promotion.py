import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import src.models  # noqa: F401
from src.db.database import Base
from src.exceptions import ConsistencyError
from src.models import (
    Booking,
    BookingStatus,
    Driver,
    DriverStatus,
    LiveRide,
    NotificationType,
    RideStatus,
)
from src.scheduler.promotion import PromotionEngine, generate_tracking_code


@pytest.fixture
def db_session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    Base.metadata.drop_all(engine)


def add_booking(session, driver=True, status=BookingStatus.assigned, **kwargs) -> Booking:
    if driver:
        driver_obj = Driver(first_name="Maria", last_name="Lopez", phone_number="+18165550199")
        session.add(driver_obj)
        session.flush()
        kwargs.setdefault("driver_id", driver_obj.id)
    booking = Booking(
        client_name="Ana",
        client_phone="+18165550100",
        pickup_location="Union Station",
        destination="KCI Airport",
        scheduled_at=datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc),
        estimated_duration=35.0,
        estimated_cost=18.75,
        status=status,
        **kwargs,
    )
    session.add(booking)
    session.commit()
    return booking


def test_generate_tracking_code_format():
    code = generate_tracking_code()
    assert code.startswith("SR")
    assert len(code) == 11
    assert code[2:].isdigit()


class TestPromote:
    def test_promote_creates_live_ride(self, db_session):
        booking = add_booking(db_session)
        engine = PromotionEngine(db_session, tracking_code_factory=lambda: "SR123456789")

        ride = engine.promote(booking.id)

        assert ride is not None
        assert ride.status == RideStatus.in_progress
        assert ride.price == 18.75
        assert ride.duration == 35.0
        assert ride.tracking_code == "SR123456789"
        assert ride.origin == "Union Station"

        db_session.refresh(booking)
        assert booking.status == BookingStatus.promoted
        assert booking.ride_id == ride.id
        assert booking.driver.status == DriverStatus.on_the_way

    def test_second_promote_is_noop(self, db_session):
        booking = add_booking(db_session)
        engine = PromotionEngine(db_session)

        assert engine.promote(booking.id) is not None
        assert engine.promote(booking.id) is None
        assert db_session.query(LiveRide).count() == 1

    def test_pending_booking_without_driver(self, db_session):
        booking = add_booking(db_session, driver=False, status=BookingStatus.pending)
        ride = PromotionEngine(db_session).promote(booking.id)
        assert ride is not None
        assert ride.driver_id is None

    @pytest.mark.parametrize(
        "status", [BookingStatus.cancelled, BookingStatus.confirmed, BookingStatus.completed]
    )
    def test_not_promotable_status_is_skipped(self, db_session, status):
        booking = add_booking(db_session, status=status)
        assert PromotionEngine(db_session).promote(booking.id) is None
        assert db_session.query(LiveRide).count() == 0

    def test_missing_booking_is_skipped(self, db_session):
        assert PromotionEngine(db_session).promote(999) is None

    def test_promoted_without_ride_raises(self, db_session):
        booking = add_booking(db_session, status=BookingStatus.promoted)
        with pytest.raises(ConsistencyError):
            PromotionEngine(db_session).promote(booking.id)

    def test_failure_rolls_back_claim(self, db_session):
        booking = add_booking(db_session)

        def broken_factory():
            raise RuntimeError("boom")

        engine = PromotionEngine(db_session, tracking_code_factory=broken_factory)
        with pytest.raises(RuntimeError):
            engine.promote(booking.id)

        db_session.refresh(booking)
        assert booking.status == BookingStatus.assigned
        assert booking.ride_id is None
        assert db_session.query(LiveRide).count() == 0

    def test_tracking_code_collision_gives_up(self, db_session):
        first = add_booking(db_session)
        second = add_booking(db_session)
        engine = PromotionEngine(db_session, tracking_code_factory=lambda: "SR000000001")

        engine.promote(first.id)
        with pytest.raises(RuntimeError):
            engine.promote(second.id)

        db_session.refresh(second)
        assert second.status == BookingStatus.assigned


def test_overlapping_runs_create_one_ride(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)

    with Session(engine) as setup:
        booking_id = add_booking(setup).id

    with Session(engine) as slow, Session(engine) as fast:
        # The slow tick selected the booking before the fast tick promoted it
        stale = slow.get(Booking, booking_id)
        assert stale.status == BookingStatus.assigned

        assert PromotionEngine(fast).promote(booking_id) is not None
        assert PromotionEngine(slow).promote(booking_id) is None

    with Session(engine) as check:
        assert check.query(LiveRide).count() == 1
        assert check.get(Booking, booking_id).status == BookingStatus.promoted
    engine.dispose()


class TestNotifyActivation:
    def test_sends_to_driver(self, db_session):
        booking = add_booking(db_session)
        dispatcher = MagicMock()
        dispatcher.send.return_value = True
        engine = PromotionEngine(db_session, dispatcher)

        ride = engine.promote(booking.id)
        assert engine.notify_activation(booking, ride) is True

        args, kwargs = dispatcher.send.call_args
        assert args[0] == "+18165550199"
        assert ride.tracking_code in args[1]["whatsapp"]
        assert kwargs["notification_type"] == NotificationType.ride_activated
        assert kwargs["reference_id"] == booking.id

    def test_no_driver(self, db_session):
        booking = add_booking(db_session, driver=False, status=BookingStatus.pending)
        dispatcher = MagicMock()
        engine = PromotionEngine(db_session, dispatcher)

        ride = engine.promote(booking.id)
        assert engine.notify_activation(booking, ride) is False
        dispatcher.send.assert_not_called()


def test_concurrent_runs_create_one_ride(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)

    with Session(engine) as setup:
        booking_id = add_booking(setup).id

    barrier = threading.Barrier(2)
    rides, errors = [], []

    def tick():
        try:
            with Session(engine) as session:
                barrier.wait(timeout=10)
                ride = PromotionEngine(session).promote(booking_id)
                rides.append(ride.id if ride is not None else None)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=tick) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    assert len(rides) == 2
    assert rides.count(None) == 1

    with Session(engine) as check:
        assert check.query(LiveRide).count() == 1
        booking = check.get(Booking, booking_id)
        assert booking.status == BookingStatus.promoted
        assert booking.ride_id is not None
    engine.dispose()
