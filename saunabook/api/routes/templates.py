from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ...api import deps
from ...db.session import get_db
from ...db import models, schemas
from ...services import instance_service, template_service
from ...services.recurrence import group_schedules_by_time

router = APIRouter(prefix="/templates", tags=["templates"])


def serialize_template(template: models.SessionTemplate) -> schemas.SessionTemplate:
    groups = group_schedules_by_time(template.active_schedules)
    return schemas.SessionTemplate(
        id=template.id,
        organization_id=template.organization_id,
        name=template.name,
        description=template.description,
        capacity=template.capacity,
        duration_minutes=template.duration_minutes,
        pricing_type=template.pricing_type.value,
        drop_in_price=template.drop_in_price,
        visibility=template.visibility.value,
        is_recurring=template.is_recurring,
        recurrence_start_date=template.recurrence_start_date,
        recurrence_end_date=template.recurrence_end_date,
        schedules=[
            schemas.ScheduleGroupOut(
                time=group.label,
                days=group.days,
                duration_minutes=group.duration_minutes,
            )
            for group in groups.values()
        ],
        updated_at=template.updated_at,
    )


def _save_response(result: template_service.TemplateSaveResult) -> schemas.TemplateSaveResult:
    return schemas.TemplateSaveResult(
        template=serialize_template(result.template),
        instances_created=result.generation.created,
    )


@router.post("", response_model=schemas.TemplateSaveResult, status_code=201)
def create_template(
    payload: schemas.SessionTemplateCreate,
    db: Session = Depends(get_db),
    admin: models.User = Depends(deps.require_admin),
):
    return _save_response(template_service.create_template(db, payload, actor=admin))


@router.patch("/{template_id}", response_model=schemas.TemplateSaveResult)
def update_template(
    template_id: int,
    payload: schemas.SessionTemplateUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    return _save_response(
        template_service.update_template(db, template_id, payload, actor=user)
    )


@router.delete("/{template_id}")
def delete_template(
    template_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    deleted = template_service.delete_template(db, template_id, actor=user)
    return {"success": True, "status": "deleted" if deleted else "closed"}


@router.delete("/schedules/{schedule_id}", response_model=schemas.TemplateSaveResult)
def delete_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    return _save_response(template_service.delete_schedule(db, schedule_id, actor=user))


@router.post("/{template_id}/generate", response_model=schemas.GenerationResult)
def generate_instances(
    template_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(deps.require_admin),
):
    template = template_service.get_template_for(db, template_id, actor=admin)
    result = instance_service.generate_instances(db, template.id)
    return schemas.GenerationResult(
        template_id=template.id,
        created=result.created,
        skipped=result.skipped,
        failed=result.failed,
    )
