"""
Checkout payment endpoints.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..middleware.auth import require_auth
from ..services.checkout_service import checkout_service
from ..utils.errors import internal_error, error_from_exception
from ..utils.exceptions import LoyaltyError

payments_bp = Blueprint('payments', __name__)


@payments_bp.route('/create-intent', methods=['POST'])
@require_auth
def create_intent():
    """
    Open a Stripe PaymentIntent for the caller's cart.

    JSON body:
        shipping_address: Delivery address
        coupon_code: Optional coupon; ignored (with coupon_error) when ineligible

    Returns:
        client_secret, payment_intent_id, totals and the applied coupon
    """
    data = request.get_json(silent=True) or {}

    try:
        result = checkout_service.create_payment_intent(
            g.user_id,
            data.get('shipping_address'),
            data.get('coupon_code'),
        )
        return jsonify(result)
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to create payment intent for user {g.user_id}')
        return internal_error('Failed to create payment intent', str(e))
