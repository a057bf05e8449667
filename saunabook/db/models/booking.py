from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class BookingStatus(str, PyEnum):
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"


# Statuses that hold spots on an instance
ACTIVE_BOOKING_STATUSES = (BookingStatus.confirmed, BookingStatus.completed)


class PaymentStatus(str, PyEnum):
    not_required = "not_required"
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("number_of_spots >= 1", name="ck_booking_spots_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    instance_id: Mapped[int] = mapped_column(
        ForeignKey("session_instances.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"))
    number_of_spots: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(Enum(BookingStatus), default=BookingStatus.confirmed)
    notes: Mapped[str | None] = mapped_column(Text)

    # Written by the payment collaborator, read-only here
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.not_required
    )
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(128))
    amount_paid: Mapped[int | None] = mapped_column(Integer)
    unit_price: Mapped[int | None] = mapped_column(Integer)
    discount_amount: Mapped[int | None] = mapped_column(Integer)

    booked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[str | None] = mapped_column(String(64))
    cancellation_reason: Mapped[str | None] = mapped_column(String(255))

    user = relationship("User")
    instance = relationship("SessionInstance", back_populates="bookings")

    @property
    def is_paid(self) -> bool:
        return bool(self.amount_paid and self.amount_paid > 0)
