from datetime import datetime, timedelta, timezone
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session
from ...db.session import get_db
from ...db import models, schemas
from ...services import availability_service, instance_service

router = APIRouter(prefix="/sessions", tags=["sessions"])

DEFAULT_LISTING_DAYS = 14


@router.get("", response_model=schemas.AvailabilityResponse)
def list_sessions(
    background_tasks: BackgroundTasks,
    organization_id: int | None = None,
    template_id: int | None = None,
    include_hidden: bool = False,
    from_dt: datetime | None = None,
    to_dt: datetime | None = None,
    db: Session = Depends(get_db),
):
    from_dt = from_dt or datetime.now(timezone.utc)
    to_dt = to_dt or from_dt + timedelta(days=DEFAULT_LISTING_DAYS)
    visible = [models.Visibility.open]
    if include_hidden:
        visible.append(models.Visibility.hidden)
    query = db.query(models.SessionTemplate).filter(
        models.SessionTemplate.visibility.in_(visible)
    )
    if organization_id:
        query = query.filter(models.SessionTemplate.organization_id == organization_id)
    if template_id:
        query = query.filter(models.SessionTemplate.id == template_id)
    templates = query.all()

    missing = instance_service.templates_needing_generation(db, templates)
    if missing:
        background_tasks.add_task(instance_service.generate_in_background, missing, db.get_bind())

    rows = availability_service.list_availability(
        db, [template.id for template in templates], from_dt, to_dt
    )
    return schemas.AvailabilityResponse(
        sessions=[
            schemas.InstanceAvailability(
                instance_id=row.instance.id,
                template_id=row.template.id,
                template_name=row.template.name,
                start_time=row.instance.start_time,
                end_time=row.instance.end_time,
                capacity=row.template.capacity,
                booked=row.booked,
                spots_remaining=row.remaining,
                is_full=row.is_full,
                pricing_type=row.template.pricing_type.value,
                visibility=row.template.visibility.value,
            )
            for row in rows
        ],
        generation_scheduled=missing,
    )
