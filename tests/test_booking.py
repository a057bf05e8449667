import itertools
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_instance, make_organization, make_template, make_user
from saunabook.core.errors import (
    CapacityExceededError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from saunabook.db import models
from saunabook.services import booking_service, instance_service
from saunabook.services.availability_service import count_booked_spots


START = datetime(2027, 1, 4, 9, 0, tzinfo=timezone.utc)


def test_second_booking_over_capacity_reports_remaining(db_session):
    organization = make_organization(db_session)
    first = make_user(db_session, organization, email="first@example.com")
    second = make_user(db_session, organization, email="second@example.com")
    template = make_template(db_session, organization, capacity=3)
    instance_service.generate_instances(db_session, template.id)

    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=first, start_time=START, spots=2
    )
    with pytest.raises(CapacityExceededError) as exc_info:
        booking_service.create_booking(
            db_session, template_id=template.id, user=second, start_time=START, spots=2
        )

    assert booking.status == models.BookingStatus.confirmed
    assert booking.number_of_spots == 2
    assert exc_info.value.remaining == 1
    payload = exc_info.value.to_payload()
    assert payload["error"] == "capacity_exceeded"
    assert payload["remaining"] == 1
    assert payload["waitlist_available"] is False


def test_full_session_offers_waitlist(db_session):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization, capacity=1)
    booking_service.create_booking(
        db_session, template_id=template.id, user=user, start_time=START
    )

    with pytest.raises(CapacityExceededError) as exc_info:
        booking_service.create_booking(
            db_session, template_id=template.id, user=user, start_time=START
        )

    assert exc_info.value.to_payload()["waitlist_available"] is True


def test_booking_materializes_missing_instance(db_session):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization)

    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=user, start_time=START
    )

    instance = db_session.get(models.SessionInstance, booking.instance_id)
    assert instance.template_id == template.id
    assert instance.end_time.replace(tzinfo=timezone.utc) == START + timedelta(minutes=60)
    # the materializer later finds the same instance and does not duplicate it
    result = instance_service.generate_instances(db_session, template.id)
    assert result.created == 0
    assert db_session.query(models.SessionInstance).count() == 1


def test_cross_tenant_booking_is_rejected(db_session):
    organization = make_organization(db_session)
    other = make_organization(db_session, slug="other")
    outsider = make_user(db_session, other)
    template = make_template(db_session, organization)

    with pytest.raises(UnauthorizedError):
        booking_service.create_booking(
            db_session, template_id=template.id, user=outsider, start_time=START
        )
    assert db_session.query(models.Booking).count() == 0


def test_closed_missing_and_invalid_requests(db_session):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    closed = make_template(db_session, organization, visibility=models.Visibility.closed)

    with pytest.raises(ValidationError):
        booking_service.create_booking(
            db_session, template_id=closed.id, user=user, start_time=START
        )
    with pytest.raises(NotFoundError):
        booking_service.create_booking(
            db_session, template_id=9999, user=user, start_time=START
        )
    with pytest.raises(ValidationError):
        booking_service.create_booking(
            db_session, template_id=closed.id, user=user, start_time=START, spots=0
        )


def test_cancelled_instance_cannot_be_booked(db_session):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization)
    instance = make_instance(db_session, template, START)
    instance.status = models.InstanceStatus.cancelled
    db_session.commit()

    with pytest.raises(ValidationError):
        booking_service.create_booking(
            db_session, template_id=template.id, user=user, start_time=START
        )


def test_booked_spots_never_exceed_capacity(db_session):
    organization = make_organization(db_session)
    capacity = 5
    template = make_template(db_session, organization, capacity=capacity)
    user = make_user(db_session, organization)
    orders = sorted(set(itertools.permutations([3, 2, 2, 1, 1, 1])))

    for week, order in enumerate(orders):
        start_time = START + timedelta(weeks=week)
        remaining = capacity
        for spots in order:
            try:
                booking_service.create_booking(
                    db_session,
                    template_id=template.id,
                    user=user,
                    start_time=start_time,
                    spots=spots,
                )
            except CapacityExceededError as exc:
                assert spots > remaining
                assert exc.remaining == remaining
            else:
                assert spots <= remaining
                remaining -= spots

        instance = (
            db_session.query(models.SessionInstance)
            .filter_by(template_id=template.id, start_time=start_time)
            .one()
        )
        booked = count_booked_spots(db_session, instance.id)
        assert booked <= capacity
        assert booked == capacity - remaining

    assert db_session.query(models.SessionInstance).count() == len(orders)


def test_check_in_toggles_between_confirmed_and_completed(db_session):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization)
    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=user, start_time=START
    )

    assert booking_service.check_in_booking(db_session, booking.id).status == models.BookingStatus.completed
    assert booking_service.check_in_booking(db_session, booking.id).status == models.BookingStatus.confirmed

    booking_service.cancel_booking_with_refund(db_session, booking.id)
    with pytest.raises(ValidationError):
        booking_service.check_in_booking(db_session, booking.id)


def test_completed_bookings_still_hold_spots(db_session):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization, capacity=1)
    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=user, start_time=START
    )
    booking_service.check_in_booking(db_session, booking.id)

    with pytest.raises(CapacityExceededError):
        booking_service.create_booking(
            db_session, template_id=template.id, user=user, start_time=START
        )


def test_update_booking_rechecks_capacity_without_double_counting(db_session):
    organization = make_organization(db_session)
    owner = make_user(db_session, organization, email="owner@example.com")
    other = make_user(db_session, organization, email="other@example.com")
    template = make_template(db_session, organization, capacity=4)
    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=owner, start_time=START, spots=2
    )
    booking_service.create_booking(
        db_session, template_id=template.id, user=other, start_time=START, spots=1
    )

    updated = booking_service.update_booking(
        db_session, booking.id, actor=owner, spots=3, notes="bringing a friend"
    )
    assert updated.number_of_spots == 3
    assert updated.notes == "bringing a friend"

    with pytest.raises(CapacityExceededError) as exc_info:
        booking_service.update_booking(db_session, booking.id, actor=owner, spots=4)
    assert exc_info.value.remaining == 3

    with pytest.raises(UnauthorizedError):
        booking_service.update_booking(db_session, booking.id, actor=other, notes="mine now")


def test_list_user_upcoming_bookings(db_session):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization)
    later = booking_service.create_booking(
        db_session, template_id=template.id, user=user, start_time=START + timedelta(days=7)
    )
    sooner = booking_service.create_booking(
        db_session, template_id=template.id, user=user, start_time=START
    )
    cancelled = booking_service.create_booking(
        db_session, template_id=template.id, user=user, start_time=START + timedelta(days=14)
    )
    booking_service.cancel_booking_with_refund(db_session, cancelled.id, actor=user)

    upcoming = booking_service.list_user_upcoming_bookings(
        db_session, user, now=START - timedelta(days=1)
    )

    assert [booking.id for booking in upcoming] == [sooner.id, later.id]
    assert booking_service.find_user_booking(db_session, user, sooner.instance_id).id == sooner.id
    assert booking_service.find_user_booking(db_session, user, cancelled.instance_id) is None
