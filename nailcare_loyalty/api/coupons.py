"""
Coupon validation endpoint used by the cart and checkout pages.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..middleware.auth import require_auth
from ..services.coupon_service import coupon_service
from ..utils.errors import bad_request, error_response, internal_error, ErrorCode

coupons_bp = Blueprint('coupons', __name__)


@coupons_bp.route('/validate', methods=['POST'])
@require_auth
def validate_coupon():
    """
    Check a coupon against the customer's cart.

    JSON body:
        code: Coupon code (required)
        subtotal: Cart subtotal
        cart_items: [{"product_id": 1, "quantity": 2}, ...]

    Returns:
        valid, coupon summary and discount_amount as a two-decimal string
    """
    data = request.get_json(silent=True) or {}
    code = (data.get('code') or '').strip()

    if not code:
        return bad_request('Coupon code is required', ErrorCode.MISSING_FIELD)

    cart_items = data.get('cart_items')
    if cart_items is not None and not isinstance(cart_items, list):
        return bad_request('cart_items must be a list', ErrorCode.INVALID_FIELD)
    if cart_items and any(not isinstance(item, dict) for item in cart_items):
        return bad_request('cart_items must be a list of objects', ErrorCode.INVALID_FIELD)

    try:
        evaluation = coupon_service.validate_coupon_code(
            code,
            data.get('subtotal'),
            cart_items,
            g.user_id,
        )
    except Exception as e:
        current_app.logger.exception(f'Failed to validate coupon {code}')
        return internal_error('Failed to validate coupon', str(e))

    if not evaluation.valid:
        error_code = ErrorCode.NOT_FOUND if evaluation.status_code == 404 else ErrorCode.COUPON_INVALID
        return error_response(evaluation.error, error_code, evaluation.status_code, log_error=False)

    coupon = evaluation.coupon
    return jsonify({
        'valid': True,
        'coupon': {
            'id': coupon.id,
            'code': coupon.code,
            'description': coupon.description,
            'discount_type': coupon.discount_type,
            'discount_value': str(coupon.discount_value),
        },
        'discount_amount': str(evaluation.discount_amount),
    })
