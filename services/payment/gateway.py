"""
services/payment/gateway.py
Razorpay client wrapper. An "authorization" is a Razorpay order: the
client completes checkout against it, and its state is reconciled here.

Gateway order states are normalized to:
    created   -> requires_payment
    attempted -> processing
    paid      -> succeeded
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pybreaker import CircuitBreakerError

from config.settings import settings
from shared.exceptions import UpstreamError
from shared.utils.resilience import circuit_breaker_manager

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"

ORDER_STATUS_MAP = {
    "created": "requires_payment",
    "attempted": "processing",
    "paid": SUCCEEDED,
}


def to_minor_units(amount: Decimal) -> int:
    """Currency amount -> integer cents, rounding half up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class Authorization:
    id: str
    status: str
    amount: int
    currency: str
    payment_id: Optional[str] = None


@dataclass
class Refund:
    id: str
    amount: int
    status: str


class PaymentGateway:
    def __init__(self, key_id: str, key_secret: str):
        self.key_id = key_id
        self.key_secret = key_secret
        self._client = None
        self.breaker = circuit_breaker_manager.get_breaker("razorpay")

    @property
    def client(self):
        """Lazy import Razorpay client."""
        if self._client is None:
            import razorpay
            self._client = razorpay.Client(auth=(self.key_id, self.key_secret))
        return self._client

    def _call(self, description: str, fn, *args):
        try:
            return self.breaker.call(fn, *args)
        except CircuitBreakerError:
            raise
        except Exception as e:
            logger.error(f"Razorpay {description} failed: {e}")
            raise UpstreamError(f"Payment gateway error: {e}") from e

    def create_authorization(
        self,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: dict,
    ) -> Authorization:
        order = self._call(
            "order create",
            self.client.order.create,
            {
                "amount": amount_minor,
                "currency": currency.upper(),
                "receipt": receipt,
                "notes": notes,
            },
        )
        return Authorization(
            id=order["id"],
            status=ORDER_STATUS_MAP.get(order.get("status"), order.get("status", "")),
            amount=order["amount"],
            currency=order.get("currency", currency.upper()),
        )

    def retrieve_authorization(self, authorization_id: str) -> Authorization:
        order = self._call("order fetch", self.client.order.fetch, authorization_id)
        status = ORDER_STATUS_MAP.get(order.get("status"), order.get("status", ""))

        payment_id = None
        if status == SUCCEEDED:
            payments = self._call("order payments", self.client.order.payments, authorization_id)
            captured = [p for p in payments.get("items", []) if p.get("status") == "captured"]
            if captured:
                payment_id = captured[0]["id"]

        return Authorization(
            id=order["id"],
            status=status,
            amount=order["amount"],
            currency=order.get("currency", ""),
            payment_id=payment_id,
        )

    def create_refund(self, payment_id: str, amount_minor: int, notes: dict) -> Refund:
        refund = self._call(
            "refund",
            self.client.payment.refund,
            payment_id,
            {"amount": amount_minor, "speed": "normal", "notes": notes},
        )
        return Refund(
            id=refund["id"],
            amount=refund.get("amount", amount_minor),
            status=refund.get("status", "pending"),
        )


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency returning the shared gateway client."""
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
    return _gateway
