from datetime import date, time
from sqlalchemy import Date, ForeignKey, Integer, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class SessionOneOffDate(Base):
    __tablename__ = "session_one_off_dates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("session_templates.id", ondelete="CASCADE"), index=True
    )
    occurs_on: Mapped[date] = mapped_column("date", Date, nullable=False)
    time_of_day: Mapped[time] = mapped_column("time", Time, nullable=False)
    duration_minutes: Mapped[int | None] = mapped_column(Integer)

    template = relationship("SessionTemplate", back_populates="one_off_dates")

    @property
    def effective_duration(self) -> int:
        return self.duration_minutes or self.template.duration_minutes
