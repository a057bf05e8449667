import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from ..config import get_settings
from ..db import models
from .payments import gateway

logger = logging.getLogger(__name__)


def issue_refund(db: Session, booking: models.Booking) -> bool:
    """Ask the payment provider to refund a booking.

    Runs after the cancellation has been committed. A failure is logged and
    audited for manual reconciliation and reported as ``False``; it never
    propagates to the caller.
    """
    if not booking.is_paid:
        return False
    settings = get_settings()
    try:
        gateway_client = gateway.get_gateway(settings)
        gateway_client.refund(
            booking_id=booking.id,
            payment_intent_id=booking.stripe_payment_intent_id,
            amount=int(booking.amount_paid),
        )
    except Exception as exc:
        logger.exception(
            "Refund failed",
            extra={"booking_id": booking.id, "amount": booking.amount_paid},
        )
        db.add(
            models.AuditLog(
                actor_type=models.ActorType.system,
                action="refund_failed",
                payload={
                    "booking_id": booking.id,
                    "amount_paid": booking.amount_paid,
                    "payment_intent_id": booking.stripe_payment_intent_id,
                    "error": str(exc),
                },
            )
        )
        db.commit()
        return False

    booking.payment_status = models.PaymentStatus.refunded
    booking.updated_at = datetime.now(timezone.utc)
    db.commit()
    logger.info("Refund issued", extra={"booking_id": booking.id})
    return True
