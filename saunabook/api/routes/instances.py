from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ...api import deps
from ...db.session import get_db
from ...db import models, schemas
from ...services import instance_service

router = APIRouter(prefix="/instances", tags=["instances"])


@router.post("/{instance_id}/cancel", response_model=schemas.InstanceCancellation)
def cancel_instance(
    instance_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(deps.require_admin),
):
    result = instance_service.cancel_instance(db, instance_id, actor=admin)
    return schemas.InstanceCancellation(
        instance=result.instance,
        cancelled_bookings=result.cancelled_bookings,
        failed_refunds=result.failed_refunds,
    )


@router.delete("/{instance_id}")
def delete_instance(
    instance_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(deps.require_admin),
):
    deleted = instance_service.delete_instance(db, instance_id, actor=admin)
    return {"success": True, "status": "deleted" if deleted else "cancelled"}
