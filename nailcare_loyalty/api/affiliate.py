"""
Affiliate API endpoints.

Handles:
- Affiliate dashboard (stats, tier, benefits, referral link)
- Affiliate code validation for the signup form
- Listing and claiming referrals
- Points earnings breakdown
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..middleware.auth import require_auth
from ..services.affiliate_service import affiliate_service, estimate_commission_rate
from ..services.affiliate_tiers import affiliate_tier_service
from ..utils.errors import bad_request, internal_error, error_from_exception, ErrorCode
from ..utils.exceptions import LoyaltyError

affiliate_bp = Blueprint('affiliate', __name__)


@affiliate_bp.route('', methods=['GET'])
@require_auth
def get_affiliate_dashboard():
    """
    The caller's affiliate dashboard. Enrolls the user on first visit.

    Returns:
        Affiliate stats, tier and benefits, points balance, referral link
        and an estimated commission rate
    """
    try:
        affiliate = affiliate_service.get_or_create_affiliate(g.user_id, g.user.email)
        benefits = affiliate_tier_service.get_tier_benefits(affiliate.tier)
        site_url = current_app.config.get('SITE_URL', '').rstrip('/')

        return jsonify({
            'affiliate': affiliate.to_dict(),
            'affiliate_code': affiliate.affiliate_code,
            'affiliate_link': f'{site_url}/?ref={affiliate.affiliate_code}',
            'tier': affiliate.tier,
            'tier_benefits': benefits,
            'total_referrals': affiliate.total_referrals,
            'active_referrals': affiliate.active_referrals,
            'total_points_earned': affiliate.total_points_earned,
            'points_balance': affiliate.current_points_balance,
            'commission_rate': estimate_commission_rate(benefits['commission_bonus']),
        })
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to fetch affiliate data for user {g.user_id}')
        return internal_error('Failed to fetch affiliate data', str(e))


@affiliate_bp.route('/validate-code', methods=['GET'])
def validate_code():
    """
    Check an affiliate code before signup. Public.

    Query params:
        code: Affiliate code (required)
    """
    code = request.args.get('code', '').strip()
    if not code:
        return jsonify({'valid': False, 'error': 'Affiliate code is required',
                        'code': ErrorCode.MISSING_FIELD.value}), 400

    try:
        return jsonify({'valid': affiliate_service.is_code_valid(code)})
    except Exception as e:
        current_app.logger.exception(f'Failed to validate affiliate code {code}')
        return internal_error('Failed to validate affiliate code', str(e))


@affiliate_bp.route('/referrals', methods=['GET'])
@require_auth
def list_referrals():
    """
    The caller's referrals with order counts and revenue.

    Returns:
        referrals, total
    """
    try:
        affiliate = affiliate_service.get_or_create_affiliate(g.user_id, g.user.email)
        referrals = affiliate_service.list_referrals(affiliate.id)
        return jsonify({
            'referrals': referrals,
            'total': len(referrals)
        })
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to fetch referrals for user {g.user_id}')
        return internal_error('Failed to fetch referrals', str(e))


@affiliate_bp.route('/referrals', methods=['POST'])
@require_auth
def claim_referral():
    """
    Attach the caller to the affiliate who referred them.

    JSON body:
        code: Affiliate code (required)

    Returns:
        referral, created (false when the caller was already referred),
        points_awarded to the affiliate
    """
    data = request.get_json(silent=True) or {}
    code = (data.get('code') or '').strip()
    if not code:
        return bad_request('Affiliate code is required', ErrorCode.MISSING_FIELD)

    try:
        result = affiliate_service.claim_referral(g.user_id, code)
        return jsonify({
            'referral': result['referral'].to_dict(),
            'created': result['created'],
            'points_awarded': result['points_awarded'],
        }), 201 if result['created'] else 200
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to claim referral for user {g.user_id}')
        return internal_error('Failed to create referral', str(e))


@affiliate_bp.route('/earnings-breakdown', methods=['GET'])
@require_auth
def earnings_breakdown():
    """
    Points earned per period.

    Query params:
        period: month (default) or year
    """
    period = request.args.get('period', 'month')

    try:
        return jsonify({'breakdown': affiliate_service.earnings_breakdown(g.user_id, period)})
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to fetch earnings breakdown for user {g.user_id}')
        return internal_error('Failed to fetch earnings breakdown', str(e))
