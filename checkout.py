"""
Hosted checkout sessions with the payment provider (Stripe).
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

import stripe

from errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    id: str
    url: Optional[str] = None
    payment_status: str = "unpaid"
    payment_intent: Optional[str] = None
    amount_total: int = 0  # minor units
    currency: str = "usd"
    customer_email: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    @property
    def transaction_id(self) -> str:
        return self.payment_intent or self.id


class StripeCheckout:
    def __init__(self, secret_key: str, currency: str = "usd"):
        self.secret_key = secret_key
        self.currency = currency

    @staticmethod
    def _to_session(obj) -> CheckoutSession:
        intent = getattr(obj, "payment_intent", None)
        if intent is not None and not isinstance(intent, str):
            intent = intent.id
        metadata = getattr(obj, "metadata", None)
        if metadata is not None and hasattr(metadata, "to_dict"):
            metadata = metadata.to_dict()
        return CheckoutSession(
            id=obj.id,
            url=getattr(obj, "url", None),
            payment_status=getattr(obj, "payment_status", None) or "unpaid",
            payment_intent=intent,
            amount_total=getattr(obj, "amount_total", None) or 0,
            currency=getattr(obj, "currency", None) or "usd",
            customer_email=getattr(obj, "customer_email", None),
            metadata=dict(metadata or {}),
        )

    def create_session(self, amount_minor: int, product_name: str, customer_email: Optional[str],
                       metadata: dict, success_url: str, cancel_url: str) -> CheckoutSession:
        try:
            obj = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode="payment",
                line_items=[{
                    "price_data": {
                        "currency": self.currency,
                        "unit_amount": amount_minor,
                        "product_data": {"name": product_name},
                    },
                    "quantity": 1,
                }],
                customer_email=customer_email,
                metadata=metadata,
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except stripe.StripeError as e:
            logger.exception("Checkout session creation failed")
            raise UpstreamError(f"Payment provider error: {e.user_message or 'unknown'}")
        return self._to_session(obj)

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        try:
            obj = stripe.checkout.Session.retrieve(session_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            logger.exception("Checkout session lookup failed")
            raise UpstreamError(f"Payment provider error: {e.user_message or 'unknown'}")
        return self._to_session(obj)
