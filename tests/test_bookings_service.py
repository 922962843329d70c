from datetime import date, datetime, timezone
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import src.models  # noqa: F401
from src.db.database import Base
from src.exceptions import NotFoundError, ValidationError
from src.models import (
    Booking,
    BookingStatus,
    Client,
    Driver,
    LiveRide,
    NotificationType,
    RecurrencePattern,
)
from src.scheduler.promotion import PromotionEngine
from src.scheduler.timewindow import TimeWindowCalculator
from src.services.bookings import (
    BookingRequest,
    assert_valid_transition,
    assign_driver,
    cancel_booking,
    create_booking,
    notify_client,
    parse_point,
    unassign_driver,
)
from src.services.fare import FlatRateFareEstimator

CHICAGO = ZoneInfo("America/Chicago")


@pytest.fixture
def db_session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    Base.metadata.drop_all(engine)


@pytest.fixture
def driver(db_session):
    driver = Driver(first_name="Maria", last_name="Lopez", phone_number="+18165550199")
    db_session.add(driver)
    db_session.commit()
    return driver


def make_request(**overrides) -> BookingRequest:
    data = {
        "client_name": "Ana",
        "client_phone": "(816) 555-0100",
        "pickup_location": "Union Station",
        "pickup_coordinates": {"lat": 39.0849, "lng": -94.5857},
        "destination": "KCI Airport",
        "destination_coordinates": {"lat": 39.2976, "lng": -94.7139},
        "scheduled_at": "2024-01-15T08:00:00-06:00",
        "estimated_duration": 30,
    }
    data.update(overrides)
    return BookingRequest(**data)


def create(db_session, **overrides) -> Booking:
    return create_booking(
        db_session,
        make_request(**overrides),
        fare_estimator=FlatRateFareEstimator(base=3.0, per_minute=0.5),
        calculator=TimeWindowCalculator("America/Chicago"),
    )


class TestParsePoint:
    def test_valid(self):
        assert parse_point("POINT(-94.5857 39.0849)") == (-94.5857, 39.0849)

    def test_extra_whitespace(self):
        assert parse_point(" point ( -94 39 ) ") == (-94.0, 39.0)

    @pytest.mark.parametrize("value", ["", "POINT(-94.5)", "LINESTRING(0 0, 1 1)", None])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_point(value)


class TestTransitions:
    def test_terminal_status_rejected(self):
        with pytest.raises(ValidationError, match="terminal"):
            assert_valid_transition(BookingStatus.cancelled, BookingStatus.assigned)

    def test_promoted_only_completes(self):
        assert_valid_transition(BookingStatus.promoted, BookingStatus.completed)
        with pytest.raises(ValidationError):
            assert_valid_transition(BookingStatus.promoted, BookingStatus.cancelled)

    def test_confirmed_cannot_be_promoted(self):
        with pytest.raises(ValidationError):
            assert_valid_transition(BookingStatus.confirmed, BookingStatus.promoted)


class TestCreateBooking:
    def test_single_booking(self, db_session):
        booking = create(db_session)

        assert booking.status == BookingStatus.pending
        assert booking.client_phone == "+8165550100"
        assert booking.pickup_coordinates == "POINT(-94.5857 39.0849)"
        assert booking.estimated_cost == 18.0
        assert booking.scheduled_at == datetime(2024, 1, 15, 14, 0, tzinfo=timezone.utc)
        assert booking.recurrence_id is None
        assert db_session.query(Client).count() == 1

    def test_with_driver_is_assigned(self, db_session, driver):
        booking = create(db_session, driver_id=driver.id)
        assert booking.status == BookingStatus.assigned
        assert booking.driver_id == driver.id

    def test_existing_client_is_reused(self, db_session):
        create(db_session)
        create(db_session, scheduled_at="2024-01-16T08:00:00-06:00")
        assert db_session.query(Client).count() == 1

    def test_unknown_driver(self, db_session):
        with pytest.raises(NotFoundError):
            create(db_session, driver_id=404)

    def test_naive_time_rejected(self, db_session):
        with pytest.raises(ValidationError):
            create(db_session, scheduled_at="2024-01-15T08:00:00")

    def test_invalid_phone_rejected(self, db_session):
        with pytest.raises(ValidationError):
            create(db_session, client_phone="unknown")

    def test_unknown_recurrence_type_creates_nothing(self, db_session):
        with pytest.raises(ValidationError):
            create(db_session, recurring={"type": "yearly"})
        assert db_session.query(Booking).count() == 0

    def test_weekly_recurrence(self, db_session, driver):
        anchor = create(
            db_session,
            driver_id=driver.id,
            recurring={"type": "weekly", "end_date": "2024-02-15", "days_of_week": [1, 3]},
        )

        pattern = db_session.get(RecurrencePattern, anchor.recurrence_id)
        assert pattern.start_date == date(2024, 1, 15)

        occurrences = (
            db_session.query(Booking)
            .filter(Booking.recurrence_id == pattern.id, Booking.id != anchor.id)
            .order_by(Booking.scheduled_at)
            .all()
        )
        # Mondays and Wednesdays from 2024-01-17 through 2024-02-14
        assert len(occurrences) == 9
        assert all(b.status == BookingStatus.pending for b in occurrences)
        assert all(b.driver_id == driver.id for b in occurrences)
        assert all(b.estimated_cost == anchor.estimated_cost for b in occurrences)
        local_times = {b.scheduled_at.astimezone(CHICAGO).time() for b in occurrences}
        assert [t.strftime("%H:%M") for t in local_times] == ["08:00"]


class TestDriverAssignment:
    def test_assign(self, db_session, driver):
        booking = create(db_session)
        booking = assign_driver(db_session, booking.id, driver.id)
        assert booking.status == BookingStatus.assigned
        assert booking.driver_id == driver.id

    def test_assign_unknown_booking(self, db_session, driver):
        with pytest.raises(NotFoundError):
            assign_driver(db_session, 404, driver.id)

    def test_unassign(self, db_session, driver):
        booking = create(db_session, driver_id=driver.id)
        booking = unassign_driver(db_session, booking.id)
        assert booking.driver_id is None
        assert booking.status == BookingStatus.confirmed

    def test_unassign_without_driver(self, db_session):
        booking = create(db_session)
        with pytest.raises(ValidationError):
            unassign_driver(db_session, booking.id)


class TestCancelBooking:
    def test_cancel(self, db_session):
        booking = create(db_session)
        assert cancel_booking(db_session, booking.id).status == BookingStatus.cancelled

    def test_cancel_twice(self, db_session):
        booking = create(db_session)
        cancel_booking(db_session, booking.id)
        with pytest.raises(ValidationError):
            cancel_booking(db_session, booking.id)

    def test_cancel_promoted_booking(self, db_session):
        booking = create(db_session)
        booking.status = BookingStatus.promoted
        db_session.commit()
        with pytest.raises(ValidationError):
            cancel_booking(db_session, booking.id)

    def test_cancel_unknown(self, db_session):
        with pytest.raises(NotFoundError):
            cancel_booking(db_session, 404)


class TestChangesAfterPromotion:
    """A booking loaded before a promotion tick commits must not be moved back."""

    @pytest.fixture
    def file_engine(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'bookings.db'}")
        Base.metadata.create_all(engine)
        yield engine
        engine.dispose()

    @pytest.fixture
    def stale(self, file_engine):
        with Session(file_engine) as setup:
            first = Driver(first_name="Maria", phone_number="+18165550199")
            second = Driver(first_name="Luis", phone_number="+18165550188")
            setup.add_all([first, second])
            setup.flush()
            booking = create(setup, driver_id=first.id)
            booking.status = BookingStatus.pending
            setup.commit()
            booking_id, second_id = booking.id, second.id

        with Session(file_engine) as api, Session(file_engine) as tick:
            assert api.get(Booking, booking_id).status == BookingStatus.pending
            assert PromotionEngine(tick).promote(booking_id) is not None
            yield api, tick, booking_id, second_id

    def check_single_ride(self, file_engine, tick, booking_id):
        assert PromotionEngine(tick).promote(booking_id) is None
        with Session(file_engine) as check:
            assert check.query(LiveRide).count() == 1
            assert check.get(Booking, booking_id).status == BookingStatus.promoted

    def test_assign_rejected(self, file_engine, stale):
        api, tick, booking_id, second_id = stale
        with pytest.raises(ValidationError):
            assign_driver(api, booking_id, second_id)
        self.check_single_ride(file_engine, tick, booking_id)

    def test_unassign_rejected(self, file_engine, stale):
        api, tick, booking_id, _ = stale
        with pytest.raises(ValidationError):
            unassign_driver(api, booking_id)
        self.check_single_ride(file_engine, tick, booking_id)

    def test_cancel_rejected(self, file_engine, stale):
        api, tick, booking_id, _ = stale
        with pytest.raises(ValidationError):
            cancel_booking(api, booking_id)
        self.check_single_ride(file_engine, tick, booking_id)


class TestNotifyClient:
    def test_sends_reminder_to_client(self, db_session):
        booking = create(db_session)
        dispatcher = MagicMock()
        dispatcher.send.return_value = True

        assert notify_client(db_session, booking.id, dispatcher) is True

        args, kwargs = dispatcher.send.call_args
        assert args[0] == "+8165550100"
        assert "Union Station" in args[1]["sms"]
        assert kwargs == {
            "notification_type": NotificationType.client_reminder,
            "reference_id": booking.id,
        }

    def test_undelivered(self, db_session):
        booking = create(db_session)
        dispatcher = MagicMock()
        dispatcher.send.return_value = False
        assert notify_client(db_session, booking.id, dispatcher) is False

    def test_unknown_booking(self, db_session):
        with pytest.raises(NotFoundError):
            notify_client(db_session, 404, MagicMock())

    def test_missing_phone(self, db_session):
        booking = create(db_session)
        booking.client_phone = ""
        db_session.commit()
        dispatcher = MagicMock()

        with pytest.raises(ValidationError):
            notify_client(db_session, booking.id, dispatcher)
        dispatcher.send.assert_not_called()
