from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..core.constants import SYSTEM_ACTOR
from ..core.errors import (
    CapacityExceededError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ..db import models
from . import notification_service, payment_service, waitlist_service
from .availability_service import remaining_for_instance
from .recurrence import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CancellationResult:
    booking: models.Booking
    refunded: bool = False
    already_cancelled: bool = False
    warnings: list[str] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _actor_label(actor: models.User | None) -> str:
    return f"user:{actor.id}" if actor is not None else SYSTEM_ACTOR


def _get_booking(db: Session, booking_id: int) -> models.Booking:
    booking = db.get(models.Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


def ensure_can_manage(actor: models.User, booking: models.Booking) -> None:
    if actor.organization_id != booking.organization_id:
        raise UnauthorizedError("You can only manage bookings in your organization")
    if not actor.is_admin and actor.id != booking.user_id:
        raise UnauthorizedError("You can only manage your own bookings")


def get_managed_booking(db: Session, booking_id: int, *, actor: models.User) -> models.Booking:
    booking = _get_booking(db, booking_id)
    ensure_can_manage(actor, booking)
    return booking


def _lock_instance(db: Session, instance_id: int) -> models.SessionInstance:
    return db.execute(
        select(models.SessionInstance)
        .where(models.SessionInstance.id == instance_id)
        .with_for_update()
    ).scalar_one()


def find_or_create_instance(
    db: Session, template: models.SessionTemplate, start_time: datetime
) -> models.SessionInstance:
    """Return the instance at ``start_time``, materializing it on demand."""
    starts_at = ensure_utc(start_time)
    stmt = select(models.SessionInstance).where(
        models.SessionInstance.template_id == template.id,
        models.SessionInstance.start_time == starts_at,
    )
    instance = db.execute(stmt.with_for_update()).scalar_one_or_none()
    if instance is not None:
        return instance
    try:
        with db.begin_nested():
            instance = models.SessionInstance(
                template_id=template.id,
                organization_id=template.organization_id,
                start_time=starts_at,
                end_time=starts_at + timedelta(minutes=template.duration_minutes),
                status=models.InstanceStatus.scheduled,
            )
            db.add(instance)
    except IntegrityError:
        # Created concurrently by another request or the materializer
        instance = db.execute(stmt).scalar_one()
    return instance


def create_booking(
    db: Session,
    *,
    template_id: int,
    user: models.User,
    start_time: datetime,
    spots: int = 1,
    notes: str | None = None,
) -> models.Booking:
    if spots < 1:
        raise ValidationError("At least one spot must be booked")
    template = db.get(models.SessionTemplate, template_id)
    if template is None:
        raise NotFoundError("Session not found")
    if not template.is_bookable:
        raise ValidationError("This session is not available for booking")
    if user.organization_id != template.organization_id:
        raise UnauthorizedError("You can only book sessions from your organization")

    instance = find_or_create_instance(db, template, start_time)
    if instance.status != models.InstanceStatus.scheduled:
        raise ValidationError("This session has been cancelled")

    remaining = remaining_for_instance(db, instance)
    if spots > remaining:
        db.rollback()
        raise CapacityExceededError(remaining=remaining, requested=spots)

    booking = models.Booking(
        instance_id=instance.id,
        user_id=user.id,
        organization_id=template.organization_id,
        number_of_spots=spots,
        status=models.BookingStatus.confirmed,
        notes=notes,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    logger.info(
        "Booking created",
        extra={"booking_id": booking.id, "instance_id": instance.id, "spots": spots},
    )
    return booking


def cancel_booking_with_refund(
    db: Session,
    booking_id: int,
    *,
    actor: models.User | None = None,
    reason: str | None = None,
    notify: bool = True,
    promote: bool = True,
) -> CancellationResult:
    booking = _get_booking(db, booking_id)
    if actor is not None:
        ensure_can_manage(actor, booking)
    if booking.status == models.BookingStatus.cancelled:
        return CancellationResult(booking=booking, already_cancelled=True)

    booking.status = models.BookingStatus.cancelled
    booking.cancelled_at = _utc_now()
    booking.cancelled_by = _actor_label(actor)
    booking.cancellation_reason = reason
    db.commit()
    db.refresh(booking)
    logger.info("Booking cancelled", extra={"booking_id": booking.id})

    result = CancellationResult(booking=booking)
    try:
        if booking.is_paid:
            result.refunded = payment_service.issue_refund(db, booking)
            if not result.refunded:
                result.warnings.append("refund_failed")
        if notify and not notification_service.notify_booking_cancelled(
            booking, refunded=result.refunded, reason=reason
        ):
            result.warnings.append("notification_not_sent")
    finally:
        if promote:
            waitlist_service.promote_waiting_list(db, booking.instance_id)
    return result


def move_booking_to_instance(
    db: Session,
    booking_id: int,
    destination_instance_id: int,
    *,
    actor: models.User,
    admin_override: bool = False,
) -> models.Booking:
    booking = _get_booking(db, booking_id)
    ensure_can_manage(actor, booking)
    if admin_override and not actor.is_admin:
        raise UnauthorizedError("Only administrators can overbook a session")
    destination = db.get(models.SessionInstance, destination_instance_id)
    if destination is None:
        raise NotFoundError("Destination session not found")
    if destination.organization_id != booking.organization_id:
        raise UnauthorizedError("Bookings can only be moved within the same organization")
    if booking.status == models.BookingStatus.cancelled:
        raise ValidationError("Cancelled bookings cannot be moved")
    if destination.status != models.InstanceStatus.scheduled:
        raise ValidationError("The destination session has been cancelled")
    if destination.id == booking.instance_id:
        return booking

    destination = _lock_instance(db, destination.id)
    remaining = remaining_for_instance(db, destination)
    if not admin_override and booking.number_of_spots > remaining:
        db.rollback()
        raise CapacityExceededError(remaining=remaining, requested=booking.number_of_spots)

    source_instance_id = booking.instance_id
    booking.instance_id = destination.id
    booking.updated_at = _utc_now()
    db.add(
        models.AuditLog(
            actor_type=models.ActorType.admin if actor.is_admin else models.ActorType.user,
            actor_id=actor.id,
            action="booking_moved",
            payload={
                "booking_id": booking.id,
                "from_instance_id": source_instance_id,
                "to_instance_id": destination.id,
                "spots": booking.number_of_spots,
                "admin_override": admin_override,
                "overbooked": booking.number_of_spots > remaining,
            },
        )
    )
    db.commit()
    db.refresh(booking)
    logger.info(
        "Booking moved",
        extra={
            "booking_id": booking.id,
            "from_instance_id": source_instance_id,
            "to_instance_id": destination.id,
        },
    )
    waitlist_service.promote_waiting_list(db, source_instance_id)
    return booking


def check_in_booking(db: Session, booking_id: int) -> models.Booking:
    booking = _get_booking(db, booking_id)
    if booking.status == models.BookingStatus.cancelled:
        raise ValidationError("Cancelled bookings cannot be checked in")
    booking.status = (
        models.BookingStatus.completed
        if booking.status == models.BookingStatus.confirmed
        else models.BookingStatus.confirmed
    )
    booking.updated_at = _utc_now()
    db.commit()
    db.refresh(booking)
    return booking


def update_booking(
    db: Session,
    booking_id: int,
    *,
    actor: models.User,
    notes: str | None = None,
    spots: int | None = None,
) -> models.Booking:
    booking = _get_booking(db, booking_id)
    ensure_can_manage(actor, booking)
    if booking.status == models.BookingStatus.cancelled:
        raise ValidationError("Cancelled bookings cannot be changed")
    freed = False
    if spots is not None:
        if spots < 1:
            raise ValidationError("At least one spot must be booked")
        if spots > booking.number_of_spots:
            instance = _lock_instance(db, booking.instance_id)
            remaining = remaining_for_instance(db, instance, exclude_booking_id=booking.id)
            if spots > remaining:
                db.rollback()
                raise CapacityExceededError(remaining=remaining, requested=spots)
        freed = spots < booking.number_of_spots
        booking.number_of_spots = spots
    if notes is not None:
        booking.notes = notes
    booking.updated_at = _utc_now()
    db.commit()
    db.refresh(booking)
    if freed:
        waitlist_service.promote_waiting_list(db, booking.instance_id)
    return booking


def list_user_upcoming_bookings(
    db: Session, user: models.User, now: datetime | None = None
) -> list[models.Booking]:
    now = ensure_utc(now or _utc_now())
    return list(
        db.execute(
            select(models.Booking)
            .join(models.SessionInstance)
            .options(
                selectinload(models.Booking.instance).selectinload(
                    models.SessionInstance.template
                )
            )
            .where(models.Booking.user_id == user.id)
            .where(models.Booking.status != models.BookingStatus.cancelled)
            .where(models.SessionInstance.start_time >= now)
            .order_by(models.SessionInstance.start_time)
        )
        .scalars()
        .all()
    )


def find_user_booking(
    db: Session, user: models.User, instance_id: int
) -> models.Booking | None:
    return (
        db.execute(
            select(models.Booking)
            .where(models.Booking.user_id == user.id)
            .where(models.Booking.instance_id == instance_id)
            .where(models.Booking.status.in_(models.ACTIVE_BOOKING_STATUSES))
            .order_by(models.Booking.id.desc())
        )
        .scalars()
        .first()
    )
