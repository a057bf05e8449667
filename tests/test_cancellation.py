from datetime import datetime, timezone

import httpx
import pytest

from conftest import make_organization, make_template, make_user
from saunabook.core.errors import UnauthorizedError
from saunabook.db import models
from saunabook.services import booking_service, payment_service, waitlist_service
from saunabook.services.availability_service import remaining_for_instance
from saunabook.services.payments import gateway


START = datetime(2027, 1, 4, 9, 0, tzinfo=timezone.utc)


def _paid_booking(db, template, user, *, amount=1500, spots=1):
    booking = booking_service.create_booking(
        db, template_id=template.id, user=user, start_time=START, spots=spots
    )
    booking.payment_status = models.PaymentStatus.completed
    booking.amount_paid = amount
    booking.stripe_payment_intent_id = "pi_test_123"
    db.commit()
    return booking


def test_cancellation_frees_capacity(db_session):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization, capacity=2)
    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=user, start_time=START, spots=2
    )
    instance = db_session.get(models.SessionInstance, booking.instance_id)
    assert remaining_for_instance(db_session, instance) == 0

    result = booking_service.cancel_booking_with_refund(
        db_session, booking.id, actor=user, reason="feeling unwell"
    )

    assert result.booking.status == models.BookingStatus.cancelled
    assert result.booking.cancelled_by == f"user:{user.id}"
    assert result.booking.cancellation_reason == "feeling unwell"
    assert result.refunded is False
    assert remaining_for_instance(db_session, instance) == 2


def test_cancelling_twice_is_a_noop(db_session, sent_emails):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization)
    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=user, start_time=START
    )

    booking_service.cancel_booking_with_refund(db_session, booking.id, actor=user)
    second = booking_service.cancel_booking_with_refund(db_session, booking.id, actor=user)

    assert second.already_cancelled is True
    assert second.refunded is False
    assert len(sent_emails) == 1


def test_paid_booking_is_refunded(db_session, sent_emails):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization)
    booking = _paid_booking(db_session, template, user)

    result = booking_service.cancel_booking_with_refund(db_session, booking.id, actor=user)

    assert result.refunded is True
    assert result.warnings == []
    assert result.booking.payment_status == models.PaymentStatus.refunded
    assert "refund" in sent_emails[0].text


def test_failed_refund_does_not_revert_cancellation(db_session, monkeypatch):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization)
    booking = _paid_booking(db_session, template, user)

    class FailingGateway:
        def refund(self, **kwargs):
            raise httpx.ConnectError("payment provider unreachable")

    monkeypatch.setattr(gateway, "get_gateway", lambda settings: FailingGateway())

    result = booking_service.cancel_booking_with_refund(db_session, booking.id, actor=user)

    assert result.refunded is False
    assert "refund_failed" in result.warnings
    db_session.refresh(booking)
    assert booking.status == models.BookingStatus.cancelled
    assert booking.payment_status == models.PaymentStatus.completed
    audit = db_session.query(models.AuditLog).filter_by(action="refund_failed").one()
    assert audit.payload["booking_id"] == booking.id
    assert audit.payload["amount_paid"] == 1500


def test_failed_notification_is_reported_as_warning(db_session, monkeypatch):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization)
    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=user, start_time=START
    )
    monkeypatch.setattr(
        booking_service.notification_service,
        "notify_booking_cancelled",
        lambda booking, refunded, reason=None: False,
    )

    result = booking_service.cancel_booking_with_refund(db_session, booking.id, actor=user)

    assert result.booking.status == models.BookingStatus.cancelled
    assert result.warnings == ["notification_not_sent"]


def test_only_owner_or_admin_can_cancel(db_session):
    organization = make_organization(db_session)
    owner = make_user(db_session, organization, email="owner@example.com")
    stranger = make_user(db_session, organization, email="stranger@example.com")
    admin = make_user(db_session, organization, role=models.UserRole.admin)
    template = make_template(db_session, organization)
    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=owner, start_time=START
    )

    with pytest.raises(UnauthorizedError):
        booking_service.cancel_booking_with_refund(db_session, booking.id, actor=stranger)

    result = booking_service.cancel_booking_with_refund(db_session, booking.id, actor=admin)
    assert result.booking.cancelled_by == f"user:{admin.id}"


def test_unpaid_booking_is_not_sent_to_gateway(db_session, monkeypatch):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization)
    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=user, start_time=START
    )

    def explode(settings):
        raise AssertionError("gateway must not be used")

    monkeypatch.setattr(gateway, "get_gateway", explode)

    assert payment_service.issue_refund(db_session, booking) is False


def test_unexpected_refund_error_still_reports_and_promotes(db_session, monkeypatch, sent_emails):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization, capacity=1)
    booking = _paid_booking(db_session, template, user)
    entry = waitlist_service.join_waiting_list(
        db_session,
        instance_id=booking.instance_id,
        template_id=template.id,
        email="next@example.com",
    ).entry

    class BrokenGateway:
        def refund(self, **kwargs):
            raise httpx.InvalidURL("Invalid port: '[::1'")

    monkeypatch.setattr(gateway, "get_gateway", lambda settings: BrokenGateway())

    result = booking_service.cancel_booking_with_refund(db_session, booking.id, actor=user)

    assert result.refunded is False
    assert result.warnings == ["refund_failed"]
    assert db_session.query(models.AuditLog).filter_by(action="refund_failed").count() == 1
    db_session.refresh(entry)
    assert entry.status == models.WaitlistStatus.notified
    assert [message.to for message in sent_emails] == [user.email, "next@example.com"]


def test_promotion_runs_when_notification_raises(db_session, monkeypatch):
    organization = make_organization(db_session)
    user = make_user(db_session, organization)
    template = make_template(db_session, organization, capacity=1)
    booking = booking_service.create_booking(
        db_session, template_id=template.id, user=user, start_time=START
    )
    entry = waitlist_service.join_waiting_list(
        db_session,
        instance_id=booking.instance_id,
        template_id=template.id,
        email="next@example.com",
    ).entry

    def explode(booking, refunded, reason=None):
        raise RuntimeError("template rendering failed")

    monkeypatch.setattr(booking_service.notification_service, "notify_booking_cancelled", explode)

    with pytest.raises(RuntimeError):
        booking_service.cancel_booking_with_refund(db_session, booking.id, actor=user)

    db_session.refresh(entry)
    assert entry.status == models.WaitlistStatus.notified
