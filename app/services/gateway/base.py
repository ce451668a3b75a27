from abc import ABC, abstractmethod


class PaymentGateway(ABC):
    """Provider-side payment sessions and proofs of payment."""

    key_id: str
    currency: str
    minor_unit_factor: int

    @abstractmethod
    async def create_order(self, *, amount: int, receipt: str, notes: dict | None = None) -> str:
        """
        Open a payment session for `amount` minor units.
        Returns the provider's session reference.
        """

    @abstractmethod
    def verify_payment_signature(self, *, razorpay_order_id: str, payment_id: str, signature: str) -> bool:
        """Check the signature the checkout widget hands back to the client."""

    @abstractmethod
    def verify_webhook_signature(self, *, body: bytes, signature: str | None) -> bool:
        """Check the signature header of a provider-to-server webhook."""

    async def aclose(self) -> None:
        pass
