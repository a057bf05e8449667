from __future__ import annotations

import logging
from typing import Any

from ...core.errors import ExternalSideEffectError
from ..http_client import HttpClientConfig, build_client
from .gateway import BasePaymentGateway

logger = logging.getLogger(__name__)


class StripeGateway(BasePaymentGateway):
    def _client_config(self) -> HttpClientConfig:
        return HttpClientConfig(
            base_url=self.settings.stripe_api_base,
            headers={"Authorization": f"Bearer {self.settings.stripe_api_key}"},
            timeout=self.settings.http_timeout_seconds,
        )

    def refund(
        self,
        *,
        booking_id: int,
        payment_intent_id: str | None,
        amount: int,
    ) -> dict[str, Any]:
        if not payment_intent_id:
            raise ExternalSideEffectError(f"Booking {booking_id} has no payment intent to refund")
        logger.info(
            "Creating Stripe refund",
            extra={"booking_id": booking_id, "amount": amount},
        )
        with build_client(self._client_config()) as client:
            response = client.post(
                "/v1/refunds",
                data={
                    "payment_intent": payment_intent_id,
                    "amount": amount,
                    "metadata[booking_id]": booking_id,
                },
                headers={"Idempotency-Key": f"booking-refund-{booking_id}"},
            )
            response.raise_for_status()
            payload = response.json()
        if payload.get("status") not in {"succeeded", "pending"}:
            raise ExternalSideEffectError(f"Stripe refund {payload.get('id')} returned {payload.get('status')}")
        return payload
