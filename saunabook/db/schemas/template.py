from datetime import date, datetime
from pydantic import BaseModel, Field


class ScheduleIn(BaseModel):
    time: str
    days: list[str]
    duration_minutes: int | None = Field(default=None, gt=0)
    is_active: bool = True


class OneOffDateIn(BaseModel):
    occurs_on: date = Field(alias="date")
    time: str
    duration_minutes: int | None = Field(default=None, gt=0)

    class Config:
        populate_by_name = True


class SessionTemplateBase(BaseModel):
    name: str
    description: str | None = None
    capacity: int
    duration_minutes: int
    pricing_type: str = "free"
    drop_in_price: int | None = None
    visibility: str = "open"
    is_recurring: bool = False
    recurrence_start_date: date | None = None
    recurrence_end_date: date | None = None
    one_off_date: date | None = None
    one_off_start_time: str | None = None


class SessionTemplateCreate(SessionTemplateBase):
    schedules: list[ScheduleIn] = []
    one_off_dates: list[OneOffDateIn] = []


class SessionTemplateUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    capacity: int | None = None
    duration_minutes: int | None = None
    pricing_type: str | None = None
    drop_in_price: int | None = None
    visibility: str | None = None
    is_recurring: bool | None = None
    recurrence_start_date: date | None = None
    recurrence_end_date: date | None = None
    one_off_date: date | None = None
    one_off_start_time: str | None = None
    schedules: list[ScheduleIn] | None = None
    one_off_dates: list[OneOffDateIn] | None = None


class ScheduleGroupOut(BaseModel):
    time: str
    days: list[str]
    duration_minutes: int | None = None


class SessionTemplate(BaseModel):
    id: int
    organization_id: int
    name: str
    description: str | None = None
    capacity: int
    duration_minutes: int
    pricing_type: str
    drop_in_price: int | None = None
    visibility: str
    is_recurring: bool
    recurrence_start_date: date | None = None
    recurrence_end_date: date | None = None
    schedules: list[ScheduleGroupOut] = []
    updated_at: datetime | None = None


class TemplateSaveResult(BaseModel):
    success: bool = True
    template: SessionTemplate
    instances_created: int = 0


class GenerationResult(BaseModel):
    success: bool = True
    template_id: int
    created: int
    skipped: int = 0
    failed: int = 0
