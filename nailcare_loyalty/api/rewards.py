"""
Rewards API endpoints for the loyalty program.

Handles:
- Available rewards listing
- Reward redemption
- The customer's redemption coupons
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..middleware.auth import require_auth
from ..services.reward_service import reward_service
from ..utils.errors import bad_request, internal_error, error_from_exception, ErrorCode
from ..utils.exceptions import LoyaltyError

rewards_bp = Blueprint('rewards', __name__)


@rewards_bp.route('', methods=['GET'])
@require_auth
def list_rewards():
    """
    Rewards the customer can redeem now: active, in window and in stock.

    Returns:
        List of rewards, cheapest first
    """
    try:
        rewards = reward_service.list_available_rewards()
        return jsonify({
            'rewards': [r.to_dict() for r in rewards],
            'count': len(rewards)
        })
    except Exception as e:
        current_app.logger.exception('Failed to fetch rewards')
        return internal_error('Failed to fetch rewards', str(e))


@rewards_bp.route('/redeem', methods=['POST'])
@require_auth
def redeem_reward():
    """
    Redeem a reward for points.

    JSON body:
        reward_id: Reward to redeem (required)

    Returns:
        success, coupon_code, coupon and redemption
    """
    data = request.get_json(silent=True) or {}
    reward_id = data.get('reward_id')

    if not reward_id:
        return bad_request('Reward ID is required', ErrorCode.MISSING_FIELD)

    try:
        result = reward_service.redeem_reward(g.user_id, reward_id)
        return jsonify({
            'success': True,
            'coupon_code': result['coupon_code'],
            'coupon': result['coupon'].to_dict(),
            'redemption': result['redemption'].to_dict(),
        })
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to redeem reward {reward_id} for user {g.user_id}')
        return internal_error('Failed to redeem reward', str(e))


@rewards_bp.route('/my-coupons', methods=['GET'])
@require_auth
def my_coupons():
    """
    The customer's redemptions with their coupons.

    Query params:
        status: PENDING, ACTIVE, USED or EXPIRED (matched against the
                status computed from the coupon now)

    Returns:
        redemptions, total
    """
    status = request.args.get('status')

    try:
        redemptions = reward_service.list_user_coupons(g.user_id, status)
        return jsonify({
            'redemptions': redemptions,
            'total': len(redemptions)
        })
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to fetch coupons for user {g.user_id}')
        return internal_error('Failed to fetch coupons', str(e))
