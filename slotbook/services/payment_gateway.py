from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Dict, Optional
from uuid import UUID, uuid4

import stripe

from slotbook.core.config import settings
from slotbook.core.exceptions import ExternalServiceUnavailable

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"


@dataclass
class PaymentIntent:
    """Subset of a gateway payment intent consumed by the booking workflow."""

    transaction_id: str
    status: str
    client_secret: Optional[str] = None


class PaymentGateway:
    """
    Outbound contract with the payment provider.

    The engine only ever creates intents and asks for their status; cancelling
    an intent is reserved for compensating a rolled-back checkout.
    """

    name = "base"

    def create_intent(self, *, amount: Decimal, currency: str, booking_id: UUID) -> PaymentIntent:
        raise NotImplementedError

    def retrieve_status(self, transaction_id: str) -> str:
        raise NotImplementedError

    def cancel_intent(self, transaction_id: str) -> None:
        raise NotImplementedError


class StubPaymentGateway(PaymentGateway):
    """
    Deterministic in-process stand-in for the payment provider.

    Local development and tests do not hit Stripe; intents get predictable
    ``pi_test_`` identifiers and stay ``pending`` until ``set_status`` is called
    (what the customer paying would do on the real gateway).
    """

    name = "stub"

    def __init__(self) -> None:
        self._intents: Dict[str, str] = {}
        self._lock = threading.Lock()

    def create_intent(self, *, amount: Decimal, currency: str, booking_id: UUID) -> PaymentIntent:
        transaction_id = f"pi_test_{uuid4().hex}"
        with self._lock:
            self._intents[transaction_id] = STATUS_PENDING
        logger.info(
            "Stub payment intent %s created for booking %s (%s %s)",
            transaction_id, booking_id, amount, currency,
        )
        return PaymentIntent(
            transaction_id=transaction_id,
            status=STATUS_PENDING,
            client_secret=f"{transaction_id}_secret_{uuid4().hex[:12]}",
        )

    def retrieve_status(self, transaction_id: str) -> str:
        with self._lock:
            status = self._intents.get(transaction_id)
        if status is None:
            raise ExternalServiceUnavailable(
                f"Payment gateway has no intent {transaction_id}.",
                gateway=self.name,
            )
        return status

    def cancel_intent(self, transaction_id: str) -> None:
        with self._lock:
            if transaction_id in self._intents:
                self._intents[transaction_id] = STATUS_FAILED

    def set_status(self, transaction_id: str, status: str) -> None:
        with self._lock:
            self._intents[transaction_id] = status


class StripePaymentGateway(PaymentGateway):
    name = "stripe"

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise RuntimeError("Stripe secret key is not configured.")
        self.api_key = api_key

    @staticmethod
    def _map_status(stripe_status: str) -> str:
        if stripe_status == "succeeded":
            return STATUS_SUCCEEDED
        if stripe_status == "canceled":
            return STATUS_FAILED
        return STATUS_PENDING

    @staticmethod
    def _minor_units(amount: Decimal) -> int:
        return int((Decimal(amount) * 100).quantize(Decimal("1")))

    def create_intent(self, *, amount: Decimal, currency: str, booking_id: UUID) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=self._minor_units(amount),
                currency=currency.lower(),
                metadata={"booking_id": str(booking_id)},
                idempotency_key=f"booking:{booking_id}",
            )
        except stripe.StripeError as exc:
            logger.error("Stripe intent creation failed for booking %s: %s", booking_id, exc)
            raise ExternalServiceUnavailable(
                "Payment gateway is unavailable, please try again later.",
                gateway=self.name,
            ) from exc
        return PaymentIntent(
            transaction_id=intent["id"],
            status=self._map_status(intent["status"]),
            client_secret=intent.get("client_secret"),
        )

    def retrieve_status(self, transaction_id: str) -> str:
        try:
            intent = stripe.PaymentIntent.retrieve(transaction_id, api_key=self.api_key)
        except stripe.StripeError as exc:
            logger.error("Stripe status lookup failed for %s: %s", transaction_id, exc)
            raise ExternalServiceUnavailable(
                "Payment gateway is unavailable, please try again later.",
                gateway=self.name,
            ) from exc
        return self._map_status(intent["status"])

    def cancel_intent(self, transaction_id: str) -> None:
        try:
            stripe.PaymentIntent.cancel(transaction_id, api_key=self.api_key)
        except stripe.StripeError as exc:
            raise ExternalServiceUnavailable(
                f"Could not cancel payment intent {transaction_id}.",
                gateway=self.name,
            ) from exc


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """Process-wide gateway; the stub must be shared so intent state survives requests."""
    if settings.PAYMENT_GATEWAY == "stripe":
        return StripePaymentGateway(settings.STRIPE_SECRET_KEY)
    return StubPaymentGateway()
