"""
Stripe integration service for storefront payments.
Creates PaymentIntents for checkout and verifies webhook events.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any
import stripe
from flask import current_app

from ..utils.exceptions import PaymentProviderError


def to_cents(amount: Decimal) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


class StripeService:
    """Service for handling Stripe payment operations."""

    def _configure(self) -> None:
        stripe.api_key = current_app.config.get('STRIPE_SECRET_KEY')

    def create_payment_intent(self, amount: Decimal, metadata: Dict[str, str]) -> Dict[str, Any]:
        """
        Create a PaymentIntent for a checkout.

        Args:
            amount: Amount to charge in major units (euros)
            metadata: String values stored on the intent and echoed by webhooks

        Returns:
            Dict with client_secret and payment_intent_id
        """
        self._configure()
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_cents(amount),
                currency=current_app.config.get('STRIPE_CURRENCY', 'eur'),
                metadata=metadata,
            )
        except stripe.StripeError as e:
            current_app.logger.error(f"Stripe PaymentIntent creation failed: {e}")
            raise PaymentProviderError('Failed to create payment intent', e)

        return {
            'client_secret': intent['client_secret'],
            'payment_intent_id': intent['id'],
        }

    @staticmethod
    def construct_webhook_event(payload: bytes, sig_header: str, webhook_secret: str):
        """
        Construct and verify a Stripe webhook event.

        Args:
            payload: Raw request body
            sig_header: Stripe-Signature header
            webhook_secret: Webhook signing secret

        Returns:
            Verified Stripe event object

        Raises:
            stripe.SignatureVerificationError: If signature invalid
        """
        return stripe.Webhook.construct_event(
            payload, sig_header, webhook_secret
        )


# Singleton instance
stripe_service = StripeService()
