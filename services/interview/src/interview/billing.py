from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Protocol

import stripe

LOGGER = logging.getLogger("prepmate.interview")

SUCCESS_PATH = "/dashboard?success=true&session_id={CHECKOUT_SESSION_ID}"
CANCEL_PATH = "/dashboard?canceled=true"


class PaymentError(RuntimeError):
    pass


class PaymentNotConfiguredError(PaymentError):
    pass


@dataclass
class CheckoutSession:
    session_id: str
    url: str | None = None


@dataclass
class CheckoutStatus:
    session_id: str
    payment_status: str
    customer_email: str | None = None
    subscription_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def paid(self) -> bool:
        return self.payment_status == "paid"


class PaymentGateway(Protocol):
    def create_checkout(self, *, user_id: str, customer_email: str) -> CheckoutSession: ...

    def retrieve_checkout(self, session_id: str) -> CheckoutStatus: ...


class StripeGateway:
    def __init__(self, *, secret_key: str, price_id: str, public_url: str) -> None:
        stripe.api_key = secret_key
        self.price_id = price_id
        self.public_url = public_url.rstrip("/")

    def create_checkout(self, *, user_id: str, customer_email: str) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": self.price_id, "quantity": 1}],
                success_url=f"{self.public_url}{SUCCESS_PATH}",
                cancel_url=f"{self.public_url}{CANCEL_PATH}",
                customer_email=customer_email,
                metadata={"userId": user_id},
            )
        except stripe.StripeError as exc:
            raise PaymentError(f"Stripe checkout creation failed: {exc}") from exc
        return CheckoutSession(session_id=session.id, url=getattr(session, "url", None))

    def retrieve_checkout(self, session_id: str) -> CheckoutStatus:
        try:
            session = stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as exc:
            raise PaymentError(f"Stripe checkout lookup failed: {exc}") from exc
        metadata = getattr(session, "metadata", None)
        user_id = getattr(metadata, "userId", None) if metadata is not None else None
        subscription = getattr(session, "subscription", None)
        if subscription is not None and not isinstance(subscription, str):
            subscription = getattr(subscription, "id", None)
        return CheckoutStatus(
            session_id=session.id,
            payment_status=getattr(session, "payment_status", None) or "unpaid",
            customer_email=getattr(session, "customer_email", None),
            subscription_id=subscription,
            metadata={"userId": user_id} if user_id else {},
        )


class DisabledPaymentGateway:
    def create_checkout(self, *, user_id: str, customer_email: str) -> CheckoutSession:
        raise PaymentNotConfiguredError("Payments are not configured.")

    def retrieve_checkout(self, session_id: str) -> CheckoutStatus:
        raise PaymentNotConfiguredError("Payments are not configured.")


def build_payment_gateway(
    *,
    secret_key: str | None,
    price_id: str | None,
    public_url: str,
) -> PaymentGateway:
    if not secret_key or not price_id:
        LOGGER.warning(
            json.dumps(
                {
                    "event": "payments_disabled",
                    "has_secret_key": bool(secret_key),
                    "has_price_id": bool(price_id),
                }
            )
        )
        return DisabledPaymentGateway()
    return StripeGateway(secret_key=secret_key, price_id=price_id, public_url=public_url)
