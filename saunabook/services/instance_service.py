from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session, selectinload, sessionmaker

from ..config import get_settings
from ..core.constants import INSTANCE_CANCELED_REASON
from ..core.errors import NotFoundError, UnauthorizedError
from ..db import models
from ..db.session import SessionLocal
from . import booking_service
from .recurrence import (
    add_months,
    day_of_week,
    ensure_utc,
    generation_window,
    iter_dates,
    local_to_utc,
    local_today,
    utc_to_local,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Occurrence:
    start_time: datetime
    end_time: datetime


@dataclass(slots=True)
class GenerationResult:
    created: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass(slots=True)
class InstanceCancellationResult:
    instance: models.SessionInstance
    cancelled_bookings: list[int] = field(default_factory=list)
    failed_refunds: list[int] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def template_timezone(template: models.SessionTemplate) -> str:
    if template.organization is not None and template.organization.timezone:
        return template.organization.timezone
    return get_settings().timezone


def _load_template(db: Session, template_id: int) -> models.SessionTemplate | None:
    return (
        db.execute(
            select(models.SessionTemplate)
            .options(
                selectinload(models.SessionTemplate.schedules),
                selectinload(models.SessionTemplate.one_off_dates),
                selectinload(models.SessionTemplate.organization),
            )
            .where(models.SessionTemplate.id == template_id)
        )
        .scalars()
        .first()
    )


def expand_weekly_schedules(
    schedules: Iterable[models.SessionSchedule],
    window_start: date,
    window_end: date,
    tz_name: str,
) -> list[Occurrence]:
    by_day: dict[int, list[models.SessionSchedule]] = defaultdict(list)
    for schedule in schedules:
        by_day[schedule.day_of_week].append(schedule)

    occurrences = []
    for day in iter_dates(window_start, window_end):
        for schedule in by_day.get(day_of_week(day), ()):
            starts_at = local_to_utc(day, schedule.time_of_day, tz_name)
            occurrences.append(
                Occurrence(
                    start_time=starts_at,
                    end_time=starts_at + timedelta(minutes=schedule.effective_duration),
                )
            )
    return occurrences


def expand_one_off_dates(template: models.SessionTemplate, tz_name: str) -> list[Occurrence]:
    occurrences = []
    if template.one_off_date and template.one_off_start_time:
        starts_at = local_to_utc(template.one_off_date, template.one_off_start_time, tz_name)
        occurrences.append(
            Occurrence(starts_at, starts_at + timedelta(minutes=template.duration_minutes))
        )
    for entry in template.one_off_dates:
        starts_at = local_to_utc(entry.occurs_on, entry.time_of_day, tz_name)
        occurrences.append(
            Occurrence(starts_at, starts_at + timedelta(minutes=entry.effective_duration))
        )
    return occurrences


def plan_occurrences(
    template: models.SessionTemplate,
    *,
    today: date | None = None,
    horizon_months: int | None = None,
) -> list[Occurrence]:
    """Every occurrence the template should have; raises when it defines none."""
    tz_name = template_timezone(template)
    if template.is_recurring:
        schedules = template.active_schedules
        if not schedules:
            raise NotFoundError(f"Session template {template.id} has no schedules")
        today = today or local_today(tz_name)
        if horizon_months is None:
            horizon_months = get_settings().generation_horizon_months
        window_start, window_end = generation_window(
            template.recurrence_start_date,
            template.recurrence_end_date,
            today,
            horizon_months,
        )
        return expand_weekly_schedules(schedules, window_start, window_end, tz_name)

    occurrences = expand_one_off_dates(template, tz_name)
    if not occurrences:
        raise NotFoundError(f"Session template {template.id} has no dates")
    return occurrences


def existing_start_times(db: Session, template_id: int) -> set[datetime]:
    rows = db.scalars(
        select(models.SessionInstance.start_time).where(
            models.SessionInstance.template_id == template_id
        )
    )
    return {ensure_utc(value) for value in rows}


def generate_instances(
    db: Session,
    template_id: int,
    *,
    today: date | None = None,
) -> GenerationResult:
    template = _load_template(db, template_id)
    if template is None:
        raise NotFoundError("Session template not found")
    occurrences = plan_occurrences(template, today=today)

    result = GenerationResult()
    existing = existing_start_times(db, template.id)
    for occurrence in occurrences:
        if occurrence.start_time in existing:
            result.skipped += 1
            continue
        try:
            with db.begin_nested():
                db.add(
                    models.SessionInstance(
                        template_id=template.id,
                        organization_id=template.organization_id,
                        start_time=occurrence.start_time,
                        end_time=occurrence.end_time,
                        status=models.InstanceStatus.scheduled,
                    )
                )
        except IntegrityError:
            logger.warning(
                "Instance already created concurrently",
                extra={"template_id": template.id, "start_time": occurrence.start_time.isoformat()},
            )
            result.skipped += 1
            continue
        except SQLAlchemyError:
            logger.exception(
                "Failed to create instance",
                extra={"template_id": template.id, "start_time": occurrence.start_time.isoformat()},
            )
            result.failed += 1
            continue
        existing.add(occurrence.start_time)
        result.created += 1
    db.commit()
    logger.info(
        "Finished generating instances",
        extra={
            "template_id": template.id,
            "created": result.created,
            "skipped": result.skipped,
            "failed": result.failed,
        },
    )
    return result


def safe_generate_instances(db: Session, template_id: int) -> GenerationResult:
    try:
        return generate_instances(db, template_id)
    except NotFoundError as exc:
        logger.info("Skipping instance generation: %s", exc, extra={"template_id": template_id})
        return GenerationResult()


def _recurrence_ended(template: models.SessionTemplate, now: datetime) -> bool:
    if template.recurrence_end_date is None:
        return False
    local_now = utc_to_local(now, template_timezone(template))
    return template.recurrence_end_date < local_now.date()


def templates_needing_generation(
    db: Session,
    templates: Sequence[models.SessionTemplate],
    now: datetime | None = None,
) -> list[int]:
    """Recurring templates with active schedules but no upcoming instances."""
    now = ensure_utc(now or _utc_now())
    candidates = [
        template.id
        for template in templates
        if template.is_recurring
        and template.active_schedules
        and not _recurrence_ended(template, now)
    ]
    if not candidates:
        return []
    horizon_end = datetime.combine(
        add_months(now.date(), get_settings().generation_horizon_months), now.timetz()
    )
    covered = set(
        db.scalars(
            select(models.SessionInstance.template_id)
            .where(models.SessionInstance.template_id.in_(candidates))
            .where(models.SessionInstance.start_time >= now)
            .where(models.SessionInstance.start_time <= horizon_end)
            .distinct()
        )
    )
    return [template_id for template_id in candidates if template_id not in covered]


def generate_in_background(
    template_ids: Sequence[int], bind: Engine | Connection | None = None
) -> None:
    """Run generation outside the request, in a session of its own."""
    session_factory = (
        SessionLocal if bind is None else sessionmaker(bind=bind, expire_on_commit=False)
    )
    with session_factory() as db:
        for template_id in template_ids:
            try:
                safe_generate_instances(db, template_id)
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Background generation failed", extra={"template_id": template_id})


def cancel_instance(
    db: Session,
    instance_id: int,
    *,
    actor: models.User | None = None,
    reason: str = INSTANCE_CANCELED_REASON,
) -> InstanceCancellationResult:
    instance = db.get(models.SessionInstance, instance_id)
    if instance is None:
        raise NotFoundError("Session instance not found")
    if actor is not None and (
        not actor.is_admin or actor.organization_id != instance.organization_id
    ):
        raise UnauthorizedError("Only organization administrators can cancel sessions")

    result = InstanceCancellationResult(instance=instance)
    if instance.status == models.InstanceStatus.cancelled:
        return result

    instance.status = models.InstanceStatus.cancelled
    waiting_entries = (
        db.query(models.WaitingListEntry)
        .filter(models.WaitingListEntry.instance_id == instance.id)
        .filter(models.WaitingListEntry.status == models.WaitlistStatus.waiting)
        .all()
    )
    for entry in waiting_entries:
        entry.status = models.WaitlistStatus.expired
    db.commit()

    booking_ids = list(
        db.scalars(
            select(models.Booking.id)
            .where(models.Booking.instance_id == instance.id)
            .where(models.Booking.status.in_(models.ACTIVE_BOOKING_STATUSES))
            .order_by(models.Booking.id)
        )
    )
    for booking_id in booking_ids:
        cancellation = booking_service.cancel_booking_with_refund(
            db, booking_id, actor=actor, reason=reason, promote=False
        )
        result.cancelled_bookings.append(booking_id)
        if "refund_failed" in cancellation.warnings:
            result.failed_refunds.append(booking_id)

    db.add(
        models.AuditLog(
            actor_type=models.ActorType.admin if actor else models.ActorType.system,
            actor_id=actor.id if actor else None,
            action="instance_cancelled",
            payload={
                "instance_id": instance.id,
                "template_id": instance.template_id,
                "start_time": ensure_utc(instance.start_time).isoformat(),
                "reason": reason,
                "cancelled_bookings": result.cancelled_bookings,
                "failed_refunds": result.failed_refunds,
            },
        )
    )
    db.commit()
    db.refresh(instance)
    logger.info(
        "Instance cancelled",
        extra={"instance_id": instance.id, "bookings": len(result.cancelled_bookings)},
    )
    return result


def delete_instance(
    db: Session, instance_id: int, *, actor: models.User | None = None
) -> bool:
    """Cancel an instance and remove it when nothing references it any more."""
    cancel_instance(db, instance_id, actor=actor)
    has_history = db.scalar(
        select(func.count(models.Booking.id)).where(models.Booking.instance_id == instance_id)
    ) or db.scalar(
        select(func.count(models.WaitingListEntry.id)).where(
            models.WaitingListEntry.instance_id == instance_id
        )
    )
    if has_history:
        return False
    instance = db.get(models.SessionInstance, instance_id)
    db.delete(instance)
    db.commit()
    return True
