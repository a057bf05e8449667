from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from ..core.errors import NotFoundError, ValidationError
from ..db import models
from . import notification_service
from .availability_service import remaining_for_instance
from .recurrence import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WaitlistPosition:
    entry: models.WaitingListEntry
    position: int | None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_email(email: str) -> str:
    normalized = (email or "").strip().lower()
    if "@" not in normalized:
        raise ValidationError("A valid e-mail address is required")
    return normalized


def _waiting_entries_query(instance_id: int):
    return (
        select(models.WaitingListEntry)
        .where(models.WaitingListEntry.instance_id == instance_id)
        .where(models.WaitingListEntry.status == models.WaitlistStatus.waiting)
        .order_by(models.WaitingListEntry.created_at, models.WaitingListEntry.id)
    )


def waiting_list_position(db: Session, entry: models.WaitingListEntry) -> int | None:
    """1-based rank among the still-waiting entries of the same instance."""
    if entry.status != models.WaitlistStatus.waiting:
        return None
    ahead = db.scalar(
        select(func.count(models.WaitingListEntry.id)).where(
            models.WaitingListEntry.instance_id == entry.instance_id,
            models.WaitingListEntry.status == models.WaitlistStatus.waiting,
            or_(
                models.WaitingListEntry.created_at < entry.created_at,
                and_(
                    models.WaitingListEntry.created_at == entry.created_at,
                    models.WaitingListEntry.id < entry.id,
                ),
            ),
        )
    )
    return int(ahead or 0) + 1


def check_waiting_list_entry(
    db: Session, instance_id: int, email: str
) -> WaitlistPosition | None:
    entry = (
        db.execute(
            _waiting_entries_query(instance_id).where(
                models.WaitingListEntry.email == _normalize_email(email)
            )
        )
        .scalars()
        .first()
    )
    if entry is None:
        return None
    return WaitlistPosition(entry=entry, position=waiting_list_position(db, entry))


def join_waiting_list(
    db: Session,
    *,
    instance_id: int,
    template_id: int,
    email: str,
    requested_spots: int = 1,
    first_name: str | None = None,
) -> WaitlistPosition:
    if requested_spots < 1:
        raise ValidationError("At least one spot must be requested")
    normalized_email = _normalize_email(email)
    instance = db.get(models.SessionInstance, instance_id)
    if instance is None:
        raise NotFoundError("Session instance not found")
    if instance.template_id != template_id:
        raise ValidationError("Instance does not belong to this session")
    if instance.status == models.InstanceStatus.cancelled:
        raise ValidationError("This session has been cancelled")

    existing = check_waiting_list_entry(db, instance_id, normalized_email)
    if existing is not None:
        return existing

    entry = models.WaitingListEntry(
        instance_id=instance_id,
        template_id=template_id,
        email=normalized_email,
        first_name=first_name,
        requested_spots=requested_spots,
        created_at=_utc_now(),
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    logger.info(
        "Joined waiting list",
        extra={"instance_id": instance_id, "entry_id": entry.id, "spots": requested_spots},
    )
    return WaitlistPosition(entry=entry, position=waiting_list_position(db, entry))


def promote_waiting_list(db: Session, instance_id: int) -> list[models.WaitingListEntry]:
    """Notify waiting entries that now fit, oldest first.

    Entries too large for the freed capacity keep their place and are looked
    at again on the next freeing event. No booking is created here; the
    notified user still goes through the normal booking capacity check.
    """
    instance = db.get(models.SessionInstance, instance_id)
    if instance is None or instance.status != models.InstanceStatus.scheduled:
        return []
    remaining = remaining_for_instance(db, instance)
    if remaining <= 0:
        return []

    now = _utc_now()
    promoted: list[models.WaitingListEntry] = []
    for entry in db.execute(_waiting_entries_query(instance_id)).scalars().all():
        if remaining <= 0:
            break
        if entry.requested_spots > remaining:
            continue
        entry.status = models.WaitlistStatus.notified
        entry.notified_at = now
        remaining -= entry.requested_spots
        promoted.append(entry)

    if not promoted:
        return []
    db.commit()

    for entry in promoted:
        logger.info(
            "Waiting list entry promoted",
            extra={"instance_id": instance_id, "entry_id": entry.id},
        )
        notification_service.notify_waitlist_spot_available(entry)
    return promoted


def expire_waiting_list(db: Session, now: datetime | None = None) -> int:
    now = ensure_utc(now or _utc_now())
    stale = (
        db.execute(
            select(models.WaitingListEntry)
            .join(models.SessionInstance)
            .where(models.WaitingListEntry.status == models.WaitlistStatus.waiting)
            .where(
                or_(
                    models.SessionInstance.start_time <= now,
                    models.SessionInstance.status == models.InstanceStatus.cancelled,
                )
            )
        )
        .scalars()
        .all()
    )
    for entry in stale:
        entry.status = models.WaitlistStatus.expired
    db.commit()
    return len(stale)
