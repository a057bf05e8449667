from datetime import datetime
from pydantic import BaseModel, Field


class WaitingListJoin(BaseModel):
    instance_id: int
    template_id: int
    email: str
    requested_spots: int = Field(default=1, ge=1)
    first_name: str | None = None


class WaitingListEntry(BaseModel):
    id: int
    instance_id: int
    template_id: int
    email: str
    first_name: str | None = None
    requested_spots: int
    status: str
    created_at: datetime | None = None
    notified_at: datetime | None = None

    class Config:
        from_attributes = True


class WaitingListPosition(BaseModel):
    success: bool = True
    entry: WaitingListEntry
    position: int | None
