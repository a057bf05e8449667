from fastapi import APIRouter, Depends
from ...db import models
from .. import deps


router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me")
def me(user: models.User = Depends(deps.get_current_user)):
    return {
        "id": user.id,
        "email": user.email,
        "organization_id": user.organization_id,
        "role": user.role.value,
    }
