"""
Webhook handlers for payment provider events.
"""
from .stripe import stripe_webhook_bp
