from __future__ import annotations

from typing import Any

from .gateway import BasePaymentGateway


class StubGateway(BasePaymentGateway):
    """Simple payment gateway stub that pretends every refund succeeds."""

    def refund(
        self,
        *,
        booking_id: int,
        payment_intent_id: str | None,
        amount: int,
    ) -> dict[str, Any]:
        return {
            "booking_id": booking_id,
            "payment_intent": payment_intent_id,
            "amount": amount,
            "status": "succeeded",
        }
