from abc import ABC, abstractmethod
from typing import Any
from ...config import Settings


class BasePaymentGateway(ABC):
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @abstractmethod
    def refund(
        self,
        *,
        booking_id: int,
        payment_intent_id: str | None,
        amount: int,
    ) -> dict[str, Any]:
        """Refund ``amount`` (minor units) for a booking; raise on failure."""
        raise NotImplementedError


def get_gateway(settings: Settings) -> BasePaymentGateway:
    if settings.payment_provider == "stub":
        from .stub import StubGateway

        return StubGateway(settings)
    if settings.payment_provider == "stripe":
        from .stripe import StripeGateway

        return StripeGateway(settings)
    raise ValueError(f"Unsupported payment provider {settings.payment_provider}")
