from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core.constants import SCHEDULE_CHANGED_REASON
from ..core.errors import NotFoundError, UnauthorizedError, ValidationError
from ..db import models, schemas
from . import instance_service, waitlist_service
from .recurrence import day_name_to_int, ensure_utc, parse_time_of_day

logger = logging.getLogger(__name__)

RECURRENCE_FIELDS = frozenset(
    {
        "schedules",
        "one_off_dates",
        "duration_minutes",
        "is_recurring",
        "recurrence_start_date",
        "recurrence_end_date",
        "one_off_date",
        "one_off_start_time",
    }
)


@dataclass(slots=True)
class TemplateSaveResult:
    template: models.SessionTemplate
    generation: instance_service.GenerationResult
    removed_instances: list[int] = field(default_factory=list)
    cancelled_instances: list[int] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _get_template(db: Session, template_id: int) -> models.SessionTemplate:
    template = db.get(models.SessionTemplate, template_id)
    if template is None:
        raise NotFoundError("Session template not found")
    return template


def ensure_can_edit(actor: models.User, template: models.SessionTemplate) -> None:
    if actor.organization_id != template.organization_id:
        raise UnauthorizedError("You can only manage sessions in your organization")
    if not actor.is_admin and actor.id != template.created_by:
        raise UnauthorizedError("You do not own this session")


def get_template_for(
    db: Session, template_id: int, *, actor: models.User
) -> models.SessionTemplate:
    template = _get_template(db, template_id)
    ensure_can_edit(actor, template)
    return template


def _enum_value(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown {label}: {value}") from exc


def build_schedules(entries: list[schemas.ScheduleIn]) -> list[models.SessionSchedule]:
    """Expand "one time of day, many days" entries into one row per day."""
    rows = []
    seen: set[tuple[int, object]] = set()
    for entry in entries:
        time_of_day = parse_time_of_day(entry.time)
        if not entry.days:
            raise ValidationError(f"No days given for {entry.time}")
        for token in entry.days:
            day = day_name_to_int(token)
            if (day, time_of_day) in seen:
                continue
            seen.add((day, time_of_day))
            rows.append(
                models.SessionSchedule(
                    day_of_week=day,
                    time_of_day=time_of_day,
                    duration_minutes=entry.duration_minutes,
                    is_active=entry.is_active,
                )
            )
    return rows


def build_one_off_dates(entries: list[schemas.OneOffDateIn]) -> list[models.SessionOneOffDate]:
    return [
        models.SessionOneOffDate(
            occurs_on=entry.occurs_on,
            time_of_day=parse_time_of_day(entry.time),
            duration_minutes=entry.duration_minutes,
        )
        for entry in entries
    ]


def _apply_fields(template: models.SessionTemplate, data: dict) -> None:
    for key, value in data.items():
        if key in ("schedules", "one_off_dates"):
            continue
        if key == "pricing_type" and value is not None:
            value = _enum_value(models.PricingType, value, "pricing type")
        elif key == "visibility" and value is not None:
            value = _enum_value(models.Visibility, value, "visibility")
        elif key == "one_off_start_time" and value is not None:
            value = parse_time_of_day(value)
        setattr(template, key, value)


def validate_template(template: models.SessionTemplate) -> None:
    if not template.name or not template.name.strip():
        raise ValidationError("Session name is required")
    if template.capacity is None or template.capacity < 1:
        raise ValidationError("Capacity must be a positive number")
    if template.duration_minutes is None or template.duration_minutes < 1:
        raise ValidationError("Duration must be a positive number of minutes")
    if template.pricing_type == models.PricingType.paid and not template.drop_in_price:
        raise ValidationError("Paid sessions need a drop-in price")
    if (
        template.recurrence_start_date
        and template.recurrence_end_date
        and template.recurrence_end_date < template.recurrence_start_date
    ):
        raise ValidationError("Recurrence end date is before its start date")


def create_template(
    db: Session, data: schemas.SessionTemplateCreate, *, actor: models.User
) -> TemplateSaveResult:
    if not actor.is_admin:
        raise UnauthorizedError("Only organization administrators can create sessions")
    fields = data.model_dump(exclude={"schedules", "one_off_dates"})
    template = models.SessionTemplate(
        organization_id=actor.organization_id,
        created_by=actor.id,
    )
    _apply_fields(template, fields)
    template.schedules = build_schedules(data.schedules)
    template.one_off_dates = build_one_off_dates(data.one_off_dates)
    validate_template(template)

    db.add(template)
    db.commit()
    db.refresh(template)
    logger.info(
        "Session template created",
        extra={"template_id": template.id, "schedules": len(template.schedules)},
    )
    generation = instance_service.safe_generate_instances(db, template.id)
    return TemplateSaveResult(template=template, generation=generation)


def _instance_has_history(db: Session, instance_id: int) -> bool:
    bookings = db.scalar(
        select(func.count(models.Booking.id)).where(models.Booking.instance_id == instance_id)
    )
    waiting = db.scalar(
        select(func.count(models.WaitingListEntry.id)).where(
            models.WaitingListEntry.instance_id == instance_id
        )
    )
    return bool(bookings or waiting)


def _future_instances(
    db: Session, template_id: int, now: datetime
) -> list[models.SessionInstance]:
    return list(
        db.scalars(
            select(models.SessionInstance)
            .where(models.SessionInstance.template_id == template_id)
            .where(models.SessionInstance.status == models.InstanceStatus.scheduled)
            .where(models.SessionInstance.start_time > now)
            .order_by(models.SessionInstance.start_time)
        )
    )


def reconcile_future_instances(
    db: Session,
    template: models.SessionTemplate,
    *,
    actor: models.User | None = None,
    now: datetime | None = None,
) -> tuple[list[int], list[int]]:
    """Drop future instances the template no longer plans.

    Returns the ids of removed instances and of cancelled ones. Instances in
    the past are never touched.
    """
    now = ensure_utc(now or _utc_now())
    try:
        planned = {
            occurrence.start_time: occurrence
            for occurrence in instance_service.plan_occurrences(template)
        }
    except NotFoundError:
        planned = {}

    removed: list[int] = []
    to_cancel: list[int] = []
    for instance in _future_instances(db, template.id, now):
        occurrence = planned.get(ensure_utc(instance.start_time))
        if occurrence is not None:
            instance.end_time = occurrence.end_time
            continue
        if _instance_has_history(db, instance.id):
            to_cancel.append(instance.id)
        else:
            removed.append(instance.id)
            db.delete(instance)
    db.commit()

    for instance_id in to_cancel:
        instance_service.cancel_instance(db, instance_id, reason=SCHEDULE_CHANGED_REASON)
    if removed or to_cancel:
        logger.info(
            "Reconciled future instances",
            extra={
                "template_id": template.id,
                "removed": len(removed),
                "cancelled": len(to_cancel),
                "actor_id": actor.id if actor else None,
            },
        )
    return removed, to_cancel


def update_template(
    db: Session,
    template_id: int,
    data: schemas.SessionTemplateUpdate,
    *,
    actor: models.User,
) -> TemplateSaveResult:
    template = _get_template(db, template_id)
    ensure_can_edit(actor, template)

    changes = data.model_dump(exclude_unset=True)
    previous_capacity = template.capacity
    try:
        _apply_fields(template, changes)
        if changes.get("schedules") is not None:
            template.schedules = build_schedules(data.schedules)
        if changes.get("one_off_dates") is not None:
            template.one_off_dates = build_one_off_dates(data.one_off_dates)
        validate_template(template)
    except ValidationError:
        db.rollback()
        raise
    db.commit()
    db.refresh(template)

    removed: list[int] = []
    cancelled: list[int] = []
    if RECURRENCE_FIELDS.intersection(changes):
        removed, cancelled = reconcile_future_instances(db, template, actor=actor)
    generation = instance_service.safe_generate_instances(db, template.id)
    if template.capacity > previous_capacity:
        for instance in _future_instances(db, template.id, _utc_now()):
            waitlist_service.promote_waiting_list(db, instance.id)
    return TemplateSaveResult(
        template=template,
        generation=generation,
        removed_instances=removed,
        cancelled_instances=cancelled,
    )


def delete_schedule(db: Session, schedule_id: int, *, actor: models.User) -> TemplateSaveResult:
    schedule = db.get(models.SessionSchedule, schedule_id)
    if schedule is None:
        raise NotFoundError("Schedule not found")
    template = schedule.template
    ensure_can_edit(actor, template)
    template.schedules.remove(schedule)
    db.commit()
    db.refresh(template)
    removed, cancelled = reconcile_future_instances(db, template, actor=actor)
    return TemplateSaveResult(
        template=template,
        generation=instance_service.GenerationResult(),
        removed_instances=removed,
        cancelled_instances=cancelled,
    )


def delete_template(
    db: Session,
    template_id: int,
    *,
    actor: models.User,
    now: datetime | None = None,
) -> bool:
    """Remove a template, or close it when booking history must be kept.

    Returns ``True`` when the template row was deleted.
    """
    template = _get_template(db, template_id)
    ensure_can_edit(actor, template)
    now = ensure_utc(now or _utc_now())

    for instance in _future_instances(db, template.id, now):
        instance_service.delete_instance(db, instance.id)

    remaining = db.scalar(
        select(func.count(models.SessionInstance.id)).where(
            models.SessionInstance.template_id == template.id
        )
    )
    if remaining:
        template.visibility = models.Visibility.closed
        template.schedules = []
        db.commit()
        logger.info(
            "Session template closed", extra={"template_id": template.id, "instances": remaining}
        )
        return False

    db.delete(template)
    db.commit()
    logger.info("Session template deleted", extra={"template_id": template_id})
    return True
