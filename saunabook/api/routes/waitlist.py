from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from ...core.errors import ValidationError
from ...db.session import get_db
from ...db import models, schemas
from ...services import waitlist_service
from ...services.availability_service import remaining_for_instance

router = APIRouter(prefix="/waitlist", tags=["waitlist"])


@router.post("", response_model=schemas.WaitingListPosition, status_code=201)
def join_waiting_list(
    payload: schemas.WaitingListJoin,
    db: Session = Depends(get_db),
):
    instance = db.get(models.SessionInstance, payload.instance_id)
    if instance is not None and remaining_for_instance(db, instance) > 0:
        raise ValidationError("This session still has free spots; book it directly")
    result = waitlist_service.join_waiting_list(
        db,
        instance_id=payload.instance_id,
        template_id=payload.template_id,
        email=payload.email,
        requested_spots=payload.requested_spots,
        first_name=payload.first_name,
    )
    return schemas.WaitingListPosition(entry=result.entry, position=result.position)


@router.get("", response_model=schemas.WaitingListPosition)
def check_waiting_list(
    instance_id: int,
    email: str,
    db: Session = Depends(get_db),
):
    result = waitlist_service.check_waiting_list_entry(db, instance_id, email)
    if result is None:
        raise HTTPException(status_code=404, detail="Not on the waiting list")
    return schemas.WaitingListPosition(entry=result.entry, position=result.position)
