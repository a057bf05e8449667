from datetime import date, datetime, time, timedelta, timezone

import pytest

from conftest import MONDAY, make_organization, make_user
from saunabook.core.errors import NotFoundError, UnauthorizedError, ValidationError
from saunabook.db import models, schemas
from saunabook.services import booking_service, template_service, waitlist_service
from saunabook.services.recurrence import ensure_utc


def _payload(**overrides):
    data = {
        "name": "Evening Sauna",
        "capacity": 6,
        "duration_minutes": 60,
        "is_recurring": True,
        "recurrence_start_date": MONDAY,
        "recurrence_end_date": MONDAY + timedelta(days=13),
        "schedules": [{"time": "09:00", "days": ["mon", "wed"]}],
    }
    data.update(overrides)
    return schemas.SessionTemplateCreate(**data)


def _starts(db, template_id, status=models.InstanceStatus.scheduled):
    return [
        ensure_utc(instance.start_time)
        for instance in db.query(models.SessionInstance)
        .filter_by(template_id=template_id, status=status)
        .order_by(models.SessionInstance.start_time)
    ]


@pytest.fixture()
def admin(db_session):
    organization = make_organization(db_session)
    return make_user(db_session, organization, role=models.UserRole.admin)


def test_create_template_generates_instances(db_session, admin):
    result = template_service.create_template(db_session, _payload(), actor=admin)

    assert result.template.organization_id == admin.organization_id
    assert result.template.created_by == admin.id
    assert sorted(schedule.day_of_week for schedule in result.template.schedules) == [1, 3]
    assert result.generation.created == 4
    assert len(_starts(db_session, result.template.id)) == 4


def test_create_template_rejects_bad_input(db_session, admin):
    member = make_user(db_session, admin.organization, email="member@example.com")
    with pytest.raises(UnauthorizedError):
        template_service.create_template(db_session, _payload(), actor=member)
    with pytest.raises(ValidationError):
        template_service.create_template(
            db_session, _payload(schedules=[{"time": "9am", "days": ["mon"]}]), actor=admin
        )
    with pytest.raises(ValidationError):
        template_service.create_template(
            db_session, _payload(schedules=[{"time": "09:00", "days": ["funday"]}]), actor=admin
        )
    with pytest.raises(ValidationError):
        template_service.create_template(db_session, _payload(capacity=0), actor=admin)
    with pytest.raises(ValidationError):
        template_service.create_template(
            db_session, _payload(pricing_type="paid", drop_in_price=None), actor=admin
        )
    assert db_session.query(models.SessionTemplate).count() == 0


def test_changing_schedule_reconciles_future_instances(db_session, admin):
    guest = make_user(db_session, admin.organization, email="guest@example.com")
    template = template_service.create_template(db_session, _payload(), actor=admin).template
    wednesday = datetime(2027, 1, 6, 9, 0, tzinfo=timezone.utc)
    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=guest, start_time=wednesday
    )

    result = template_service.update_template(
        db_session,
        template.id,
        schemas.SessionTemplateUpdate(schedules=[{"time": "09:00", "days": ["mon", "fri"]}]),
        actor=admin,
    )

    assert result.cancelled_instances == [booking.instance_id]
    assert len(result.removed_instances) == 1
    assert result.generation.created == 2
    assert _starts(db_session, template.id) == [
        datetime(2027, 1, 4, 9, 0, tzinfo=timezone.utc),
        datetime(2027, 1, 8, 9, 0, tzinfo=timezone.utc),
        datetime(2027, 1, 11, 9, 0, tzinfo=timezone.utc),
        datetime(2027, 1, 15, 9, 0, tzinfo=timezone.utc),
    ]
    assert _starts(db_session, template.id, models.InstanceStatus.cancelled) == [wednesday]
    db_session.refresh(booking)
    assert booking.status == models.BookingStatus.cancelled
    assert booking.cancellation_reason == "schedule_changed"


def test_changing_duration_keeps_instances_and_updates_end(db_session, admin):
    template = template_service.create_template(db_session, _payload(), actor=admin).template
    ids_before = {instance.id for instance in template.instances}

    result = template_service.update_template(
        db_session, template.id, schemas.SessionTemplateUpdate(duration_minutes=90), actor=admin
    )

    instances = db_session.query(models.SessionInstance).filter_by(template_id=template.id).all()
    assert {instance.id for instance in instances} == ids_before
    assert result.removed_instances == [] and result.cancelled_instances == []
    for instance in instances:
        assert ensure_utc(instance.end_time) - ensure_utc(instance.start_time) == timedelta(
            minutes=90
        )


def test_renaming_does_not_touch_instances(db_session, admin):
    template = template_service.create_template(db_session, _payload(), actor=admin).template

    result = template_service.update_template(
        db_session, template.id, schemas.SessionTemplateUpdate(name="Sunrise Sauna"), actor=admin
    )

    assert result.template.name == "Sunrise Sauna"
    assert result.generation.created == 0
    assert len(_starts(db_session, template.id)) == 4


def test_only_owner_or_admin_of_organization_can_edit(db_session, admin):
    template = template_service.create_template(db_session, _payload(), actor=admin).template
    member = make_user(db_session, admin.organization, email="member@example.com")
    other_org = make_organization(db_session, slug="other")
    outsider = make_user(db_session, other_org, role=models.UserRole.admin)
    update = schemas.SessionTemplateUpdate(name="Mine")

    with pytest.raises(UnauthorizedError):
        template_service.update_template(db_session, template.id, update, actor=member)
    with pytest.raises(UnauthorizedError):
        template_service.update_template(db_session, template.id, update, actor=outsider)
    with pytest.raises(NotFoundError):
        template_service.update_template(db_session, 9999, update, actor=admin)


def test_delete_template_without_bookings_removes_everything(db_session, admin):
    template = template_service.create_template(db_session, _payload(), actor=admin).template

    assert template_service.delete_template(db_session, template.id, actor=admin) is True
    assert db_session.query(models.SessionTemplate).count() == 0
    assert db_session.query(models.SessionInstance).count() == 0
    assert db_session.query(models.SessionSchedule).count() == 0


def test_delete_template_with_bookings_closes_it(db_session, admin):
    guest = make_user(db_session, admin.organization, email="guest@example.com")
    template = template_service.create_template(db_session, _payload(), actor=admin).template
    booking = booking_service.create_booking(
        db_session,
        template_id=template.id,
        user=guest,
        start_time=datetime(2027, 1, 4, 9, 0, tzinfo=timezone.utc),
    )

    assert template_service.delete_template(db_session, template.id, actor=admin) is False
    db_session.refresh(template)
    db_session.refresh(booking)
    assert template.visibility == models.Visibility.closed
    assert template.schedules == []
    assert booking.status == models.BookingStatus.cancelled
    assert db_session.query(models.SessionInstance).count() == 1


def test_past_instances_are_never_touched(db_session, admin):
    guest = make_user(db_session, admin.organization, email="guest@example.com")
    template = template_service.create_template(db_session, _payload(), actor=admin).template
    booking = booking_service.create_booking(
        db_session,
        template_id=template.id,
        user=guest,
        start_time=datetime(2027, 1, 6, 9, 0, tzinfo=timezone.utc),
    )
    template.schedules = []
    db_session.commit()

    removed, cancelled = template_service.reconcile_future_instances(
        db_session, template, now=datetime(2027, 1, 7, tzinfo=timezone.utc)
    )

    db_session.refresh(booking)
    assert booking.status == models.BookingStatus.confirmed
    assert cancelled == []
    assert len(removed) == 2
    assert _starts(db_session, template.id) == [
        datetime(2027, 1, 4, 9, 0, tzinfo=timezone.utc),
        datetime(2027, 1, 6, 9, 0, tzinfo=timezone.utc),
    ]


def test_one_off_template_creation(db_session, admin):
    payload = _payload(
        is_recurring=False,
        recurrence_start_date=None,
        recurrence_end_date=None,
        schedules=[],
        one_off_date=date(2027, 2, 14),
        one_off_start_time="19:30",
    )

    result = template_service.create_template(db_session, payload, actor=admin)

    assert result.template.one_off_start_time == time(19, 30)
    assert _starts(db_session, result.template.id) == [
        datetime(2027, 2, 14, 19, 30, tzinfo=timezone.utc)
    ]


def test_raising_capacity_notifies_waiting_list(db_session, admin, sent_emails):
    guest = make_user(db_session, admin.organization, email="guest@example.com")
    template = template_service.create_template(
        db_session, _payload(capacity=1), actor=admin
    ).template
    monday = datetime(2027, 1, 4, 9, 0, tzinfo=timezone.utc)
    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=guest, start_time=monday
    )
    entry = waitlist_service.join_waiting_list(
        db_session,
        instance_id=booking.instance_id,
        template_id=template.id,
        email="waiting@example.com",
    ).entry

    template_service.update_template(
        db_session, template.id, schemas.SessionTemplateUpdate(capacity=2), actor=admin
    )

    db_session.refresh(entry)
    assert entry.status == models.WaitlistStatus.notified
    assert [message.to for message in sent_emails] == ["waiting@example.com"]


def test_lowering_capacity_does_not_notify(db_session, admin, sent_emails):
    guest = make_user(db_session, admin.organization, email="guest@example.com")
    template = template_service.create_template(
        db_session, _payload(capacity=2), actor=admin
    ).template
    monday = datetime(2027, 1, 4, 9, 0, tzinfo=timezone.utc)
    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=guest, start_time=monday, spots=2
    )
    entry = waitlist_service.join_waiting_list(
        db_session,
        instance_id=booking.instance_id,
        template_id=template.id,
        email="waiting@example.com",
    ).entry

    template_service.update_template(
        db_session, template.id, schemas.SessionTemplateUpdate(capacity=1), actor=admin
    )

    db_session.refresh(entry)
    assert entry.status == models.WaitlistStatus.waiting
    assert sent_emails == []
