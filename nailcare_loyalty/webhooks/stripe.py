"""
Stripe webhook endpoint.
Handles payment events from Stripe.
"""
import stripe
from flask import Blueprint, request, jsonify, current_app

from ..services.stripe_service import StripeService
from ..services.checkout_service import checkout_service
from ..utils.errors import bad_request, internal_error, ErrorCode

stripe_webhook_bp = Blueprint('stripe_webhook', __name__)


@stripe_webhook_bp.route('/webhook', methods=['POST'])
def handle_stripe_webhook():
    """
    Handle incoming Stripe webhook events.

    Stripe sends events for:
    - payment_intent.succeeded (checkout paid, creates the order)

    Other event types are acknowledged and ignored.
    """
    payload = request.get_data()
    sig_header = request.headers.get('Stripe-Signature')
    webhook_secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')

    if not webhook_secret:
        return internal_error('Webhook secret not configured')

    if not sig_header:
        return bad_request('No signature', ErrorCode.INVALID_SIGNATURE)

    # Verify and construct the event
    try:
        event = StripeService.construct_webhook_event(
            payload, sig_header, webhook_secret
        )
    except (ValueError, stripe.SignatureVerificationError) as e:
        current_app.logger.warning(f'[Stripe Webhook] Signature verification failed: {e}')
        return bad_request(f'Webhook Error: {e}', ErrorCode.INVALID_SIGNATURE)

    if event['type'] != 'payment_intent.succeeded':
        return jsonify({'received': True, 'handled': False})

    try:
        result = checkout_service.handle_payment_succeeded(event['data']['object'])
    except Exception as e:
        current_app.logger.exception(f"[Stripe Webhook] Failed to process {event['type']}")
        return internal_error('Failed to process payment', str(e))

    current_app.logger.info(f"[Stripe Webhook] {event['type']}: {result}")
    return jsonify({'received': True, **result})
