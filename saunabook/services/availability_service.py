from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from ..db import models
from .recurrence import ensure_utc


@dataclass(slots=True)
class InstanceAvailability:
    instance: models.SessionInstance
    template: models.SessionTemplate
    booked: int
    remaining: int

    @property
    def is_full(self) -> bool:
        return self.remaining == 0


def booked_spots(bookings: Iterable[models.Booking]) -> int:
    return sum(
        booking.number_of_spots or 0
        for booking in bookings
        if booking.status in models.ACTIVE_BOOKING_STATUSES
    )


def remaining_from_booked(capacity: int, booked: int) -> int:
    return max(0, int(capacity or 0) - booked)


def spots_remaining(
    instance: models.SessionInstance, template: models.SessionTemplate
) -> int:
    return remaining_from_booked(template.capacity, booked_spots(instance.bookings))


def count_booked_spots(
    db: Session, instance_id: int, *, exclude_booking_id: int | None = None
) -> int:
    stmt = select(func.coalesce(func.sum(models.Booking.number_of_spots), 0)).where(
        models.Booking.instance_id == instance_id,
        models.Booking.status.in_(models.ACTIVE_BOOKING_STATUSES),
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(models.Booking.id != exclude_booking_id)
    return int(db.scalar(stmt) or 0)


def remaining_for_instance(
    db: Session,
    instance: models.SessionInstance,
    *,
    exclude_booking_id: int | None = None,
) -> int:
    """Fresh write-time figure; never reuse a value computed earlier in the request."""
    booked = count_booked_spots(db, instance.id, exclude_booking_id=exclude_booking_id)
    return remaining_from_booked(instance.template.capacity, booked)


def booked_by_instance(db: Session, instance_ids: Sequence[int]) -> dict[int, int]:
    if not instance_ids:
        return {}
    rows = db.execute(
        select(models.Booking.instance_id, func.sum(models.Booking.number_of_spots))
        .where(models.Booking.instance_id.in_(instance_ids))
        .where(models.Booking.status.in_(models.ACTIVE_BOOKING_STATUSES))
        .group_by(models.Booking.instance_id)
    ).all()
    return {instance_id: int(total or 0) for instance_id, total in rows}


def remaining_by_instance(
    db: Session, instances: Sequence[models.SessionInstance]
) -> dict[int, int]:
    booked = booked_by_instance(db, [instance.id for instance in instances])
    return {
        instance.id: remaining_from_booked(
            instance.template.capacity, booked.get(instance.id, 0)
        )
        for instance in instances
    }


def list_availability(
    db: Session,
    template_ids: Sequence[int],
    start: datetime,
    end: datetime,
) -> list[InstanceAvailability]:
    if not template_ids:
        return []
    instances = list(
        db.execute(
            select(models.SessionInstance)
            .options(selectinload(models.SessionInstance.template))
            .where(models.SessionInstance.template_id.in_(template_ids))
            .where(models.SessionInstance.status == models.InstanceStatus.scheduled)
            .where(models.SessionInstance.start_time >= ensure_utc(start))
            .where(models.SessionInstance.start_time <= ensure_utc(end))
            .order_by(models.SessionInstance.start_time, models.SessionInstance.id)
        )
        .scalars()
        .all()
    )
    booked = booked_by_instance(db, [instance.id for instance in instances])
    result = []
    for instance in instances:
        booked_count = booked.get(instance.id, 0)
        result.append(
            InstanceAvailability(
                instance=instance,
                template=instance.template,
                booked=booked_count,
                remaining=remaining_from_booked(instance.template.capacity, booked_count),
            )
        )
    return result
