from datetime import date, datetime, time
from enum import Enum as PyEnum
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class PricingType(str, PyEnum):
    free = "free"
    paid = "paid"


class Visibility(str, PyEnum):
    open = "open"
    hidden = "hidden"
    closed = "closed"


class SessionTemplate(Base):
    __tablename__ = "session_templates"
    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_session_template_capacity_positive"),
        CheckConstraint("duration_minutes > 0", name="ck_session_template_duration_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), index=True
    )
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    pricing_type: Mapped[PricingType] = mapped_column(Enum(PricingType), default=PricingType.free)
    drop_in_price: Mapped[int | None] = mapped_column(Integer)
    visibility: Mapped[Visibility] = mapped_column(Enum(Visibility), default=Visibility.open)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    recurrence_start_date: Mapped[date | None] = mapped_column(Date)
    recurrence_end_date: Mapped[date | None] = mapped_column(Date)
    one_off_date: Mapped[date | None] = mapped_column(Date)
    one_off_start_time: Mapped[time | None] = mapped_column(Time)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    organization = relationship("Organization", back_populates="templates")
    schedules = relationship(
        "SessionSchedule",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="SessionSchedule.id",
    )
    one_off_dates = relationship(
        "SessionOneOffDate",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="SessionOneOffDate.id",
    )
    instances = relationship("SessionInstance", back_populates="template")

    @property
    def is_bookable(self) -> bool:
        return self.visibility != Visibility.closed

    @property
    def active_schedules(self) -> list:
        return [schedule for schedule in self.schedules if schedule.is_active]
