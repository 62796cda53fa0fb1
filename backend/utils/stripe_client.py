# backend/utils/stripe_client.py
import logging
from typing import List, Optional
from urllib.parse import urljoin

import stripe
from fastapi import Request

from config import Settings
from utils.errors import ExternalServiceError, NotFound, SignatureVerificationError

logger = logging.getLogger(__name__)


class StripeClient:
    """Thin wrapper over Stripe hosted checkout and webhook verification.

    One instance is created at application startup and handed to the routes
    through the ``get_payment_client`` dependency.
    """

    def __init__(self, settings: Settings):
        # Initialize credentials and redirect URLs
        self.api_key = settings.STRIPE_SECRET_KEY
        self.webhook_secret = settings.STRIPE_WEBHOOK_SECRET
        self.currency = settings.STRIPE_CURRENCY
        self.success_url = urljoin(settings.FRONTEND_URL, "/orders") + "?session_id={CHECKOUT_SESSION_ID}"
        self.cancel_url = urljoin(settings.FRONTEND_URL, "/cancel")

    def build_line_items(self, items: List[dict]) -> List[dict]:
        # items: [{"name", "quantity", "price"}]; amounts go to Stripe in minor units
        return [
            {
                "price_data": {
                    "currency": self.currency,
                    "product_data": {
                        "name": it["name"] or "Unknown Product",
                        "description": f"Quantity: {it['quantity']}",
                    },
                    "unit_amount": int(round(it["price"] * 100)),
                },
                "quantity": it["quantity"],
            }
            for it in items
        ]

    def create_checkout_session(self, line_items: List[dict], metadata: dict) -> str:
        # Request a hosted payment page and return its session id
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                payment_method_types=["card"],
                line_items=line_items,
                mode="payment",
                success_url=self.success_url,
                cancel_url=self.cancel_url,
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error("Stripe create checkout session error: %s", e)
            raise ExternalServiceError("Failed to create Stripe session")
        return session.id

    def retrieve_session(self, session_id: str) -> dict:
        """Fetches a checkout session; the result carries ``payment_status`` and ``metadata``."""
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.InvalidRequestError as e:
            logger.warning("Stripe checkout session %s not found: %s", session_id, e)
            raise NotFound("Checkout session not found")
        except stripe.StripeError as e:
            logger.error("Stripe retrieve checkout session error: %s", e)
            raise ExternalServiceError("Failed to retrieve Stripe session")
        return session.to_dict()

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> dict:
        """Verifies the Stripe-Signature header and returns the decoded event."""
        if not sig_header:
            raise SignatureVerificationError("Missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Stripe webhook signature verification failed: %s", e)
            raise SignatureVerificationError("Webhook signature verification failed")
        except ValueError:
            raise SignatureVerificationError("Webhook payload is not valid JSON")
        return event.to_dict()


def get_payment_client(request: Request) -> StripeClient:
    return request.app.state.payment_client
