"""
Admin API endpoints for the loyalty program.

Handles:
- Points earning configuration
- Affiliate management (activation, approval, tier override, points adjustment)
- Rewards catalog management
- Affiliate tier thresholds, distribution and bulk promotion
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..middleware.auth import require_admin
from ..models.affiliate import TIER_ORDER
from ..models.points import PointsTransaction, PointsTransactionType
from ..services.points_service import points_service
from ..services.affiliate_service import affiliate_service, estimate_commission_rate
from ..services.affiliate_tiers import affiliate_tier_service
from ..services.reward_service import reward_service
from ..utils.cache import cache
from ..utils.errors import bad_request, internal_error, error_from_exception, ErrorCode
from ..utils.exceptions import LoyaltyError

admin_bp = Blueprint('admin', __name__)


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


# ==============================================================================
# POINTS CONFIGURATION
# ==============================================================================

@admin_bp.route('/points-config', methods=['GET'])
@require_admin
def list_points_configs():
    """
    List points configurations, grouped by action type, newest first.

    Query params:
        is_active: 'true' or 'false' to filter
    """
    is_active = request.args.get('is_active')
    active_filter = {'true': True, 'false': False}.get((is_active or '').lower())

    configs = points_service.list_configurations(active_filter)
    return jsonify({
        'configurations': [c.to_dict() for c in configs],
        'count': len(configs)
    })


@admin_bp.route('/points-config', methods=['POST'])
@require_admin
def create_points_config():
    """
    Create a points configuration.

    JSON body:
        action_type: REFERRAL_SIGNUP, REFERRAL_FIRST_ORDER,
                     REFERRAL_REPEAT_ORDER or OWN_PURCHASE (required)
        points_amount: Flat points
        tiered_config: {"tiers": [{"min_order_value", "max_order_value", "points"}]}
        min_order_value, max_points_per_transaction, is_active,
        valid_from, valid_until
    """
    data = request.get_json(silent=True) or {}

    try:
        config = points_service.create_configuration(data)
        cache.delete_memoized(estimate_commission_rate)
        return jsonify(config.to_dict()), 201
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception('Failed to create points configuration')
        return internal_error('Failed to create points configuration', str(e))


@admin_bp.route('/points-config/<int:config_id>', methods=['GET'])
@require_admin
def get_points_config(config_id):
    try:
        return jsonify(points_service.get_configuration(config_id).to_dict())
    except LoyaltyError as e:
        return error_from_exception(e)


@admin_bp.route('/points-config/<int:config_id>', methods=['PATCH'])
@require_admin
def update_points_config(config_id):
    data = request.get_json(silent=True) or {}

    try:
        config = points_service.update_configuration(config_id, data)
        cache.delete_memoized(estimate_commission_rate)
        return jsonify(config.to_dict())
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to update points configuration {config_id}')
        return internal_error('Failed to update points configuration', str(e))


@admin_bp.route('/points-config/<int:config_id>', methods=['DELETE'])
@require_admin
def delete_points_config(config_id):
    try:
        points_service.delete_configuration(config_id)
        cache.delete_memoized(estimate_commission_rate)
        return jsonify({'success': True})
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to delete points configuration {config_id}')
        return internal_error('Failed to delete points configuration', str(e))


# ==============================================================================
# AFFILIATES
# ==============================================================================

@admin_bp.route('/affiliates', methods=['GET'])
@require_admin
def list_affiliates():
    """
    Paginated affiliates.

    Query params:
        status: active, inactive or all
        search: Code, email or name
        page, per_page
    """
    try:
        result = affiliate_service.list_affiliates(
            request.args.get('status'),
            request.args.get('search'),
            _int_arg('page', 1),
            _int_arg('per_page', 20),
        )
        return jsonify({
            'affiliates': [{
                **a.to_dict(),
                'user': a.user.to_dict() if a.user else None,
            } for a in result['affiliates']],
            'pagination': result['pagination'],
        })
    except Exception as e:
        current_app.logger.exception('Failed to fetch affiliates')
        return internal_error('Failed to fetch affiliates', str(e))


@admin_bp.route('/affiliates/<int:affiliate_id>', methods=['GET'])
@require_admin
def get_affiliate(affiliate_id):
    """Affiliate detail with referrals and the latest 50 ledger entries."""
    try:
        affiliate = affiliate_service.get_affiliate(affiliate_id)
        recent = points_service.get_history(affiliate.user_id, 50)
        return jsonify({
            **affiliate.to_dict(),
            'user': affiliate.user.to_dict() if affiliate.user else None,
            'tier_benefits': affiliate_tier_service.get_tier_benefits(affiliate.tier),
            'referrals': affiliate_service.list_referrals(affiliate.id),
            'referral_orders': affiliate_service.referral_order_count(affiliate.id),
            'recent_transactions': [t.to_dict() for t in recent],
        })
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to fetch affiliate {affiliate_id}')
        return internal_error('Failed to fetch affiliate', str(e))


@admin_bp.route('/affiliates/<int:affiliate_id>', methods=['PATCH'])
@require_admin
def update_affiliate(affiliate_id):
    """
    Update an affiliate.

    JSON body (all optional):
        is_active: Activate or deactivate
        approved_by: Approve (only when not yet approved)
        tier: Override the tier, up or down
        points_adjustment: Signed points to add or remove
        points_description: Ledger description for the adjustment
    """
    data = request.get_json(silent=True) or {}

    adjustment = data.get('points_adjustment')
    if adjustment is not None and (isinstance(adjustment, bool) or not isinstance(adjustment, int)):
        return bad_request('points_adjustment must be an integer', ErrorCode.INVALID_FIELD)
    if 'is_active' in data and not isinstance(data['is_active'], bool):
        return bad_request('is_active must be a boolean', ErrorCode.INVALID_FIELD)
    tier = data.get('tier')
    if tier is not None and (not isinstance(tier, str) or tier.upper() not in TIER_ORDER):
        return bad_request(f'tier must be one of {", ".join(TIER_ORDER)}', ErrorCode.INVALID_FIELD)
    approved_by = data.get('approved_by')
    if approved_by is not None and (not isinstance(approved_by, str) or not approved_by.strip()):
        return bad_request('approved_by must be a non-empty string', ErrorCode.INVALID_FIELD)

    try:
        affiliate = affiliate_service.get_affiliate(affiliate_id)

        if adjustment:
            points_service.adjust_points(
                affiliate.user_id,
                adjustment,
                data.get('points_description') or 'Manual adjustment by admin',
                g.user_id,
            )

        if 'is_active' in data and data['is_active'] != affiliate.is_active:
            affiliate_service.set_active(affiliate_id, data['is_active'])

        if approved_by and not affiliate.is_approved:
            affiliate_service.approve_affiliate(affiliate_id, approved_by.strip())

        if tier:
            affiliate_tier_service.set_tier(affiliate_id, tier)

        affiliate = affiliate_service.get_affiliate(affiliate_id)
        return jsonify(affiliate.to_dict())
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to update affiliate {affiliate_id}')
        return internal_error('Failed to update affiliate', str(e))


@admin_bp.route('/affiliates/<int:affiliate_id>/referrals', methods=['GET'])
@require_admin
def get_affiliate_referrals(affiliate_id):
    try:
        affiliate = affiliate_service.get_affiliate(affiliate_id)
        referrals = affiliate_service.list_referrals(affiliate.id)
        return jsonify({'referrals': referrals, 'total': len(referrals)})
    except LoyaltyError as e:
        return error_from_exception(e)


@admin_bp.route('/affiliates/<int:affiliate_id>/transactions', methods=['GET'])
@require_admin
def get_affiliate_transactions(affiliate_id):
    """
    Paginated ledger of the affiliate's user.

    Query params:
        page, per_page (default 50), type
    """
    try:
        affiliate = affiliate_service.get_affiliate(affiliate_id)
    except LoyaltyError as e:
        return error_from_exception(e)

    page = max(_int_arg('page', 1), 1)
    per_page = max(min(_int_arg('per_page', 50), 200), 1)
    transaction_type = (request.args.get('type') or '').upper()
    if transaction_type and transaction_type not in PointsTransactionType.__members__:
        return bad_request(f'Unknown transaction type: {transaction_type}', ErrorCode.INVALID_FIELD)

    query = PointsTransaction.query.filter_by(user_id=affiliate.user_id)
    if transaction_type:
        query = query.filter_by(type=transaction_type)

    total = query.count()
    transactions = query.order_by(
        PointsTransaction.created_at.desc(),
        PointsTransaction.id.desc()
    ).offset((page - 1) * per_page).limit(per_page).all()

    return jsonify({
        'transactions': [t.to_dict() for t in transactions],
        'pagination': {
            'total': total,
            'page': page,
            'per_page': per_page,
            'total_pages': (total + per_page - 1) // per_page,
        }
    })


# ==============================================================================
# REWARDS CATALOG
# ==============================================================================

@admin_bp.route('/rewards', methods=['GET'])
@require_admin
def list_rewards():
    include_inactive = request.args.get('include_inactive', 'true').lower() == 'true'
    rewards = reward_service.list_rewards(include_inactive)
    return jsonify({
        'rewards': [r.to_dict() for r in rewards],
        'count': len(rewards)
    })


@admin_bp.route('/rewards', methods=['POST'])
@require_admin
def create_reward():
    """
    Create a reward.

    JSON body:
        name, points_cost, discount_type (PERCENTAGE or FIXED),
        discount_value (required)
        description, min_purchase_amount, max_discount_amount, stock,
        is_active, valid_from, valid_until
    """
    data = request.get_json(silent=True) or {}

    try:
        reward = reward_service.create_reward(data)
        return jsonify(reward.to_dict()), 201
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception('Failed to create reward')
        return internal_error('Failed to create reward', str(e))


@admin_bp.route('/rewards/<int:reward_id>', methods=['GET'])
@require_admin
def get_reward(reward_id):
    try:
        return jsonify(reward_service.get_reward(reward_id).to_dict())
    except LoyaltyError as e:
        return error_from_exception(e)


@admin_bp.route('/rewards/<int:reward_id>', methods=['PATCH'])
@require_admin
def update_reward(reward_id):
    """Update a reward. Pricing fields are frozen once it has been redeemed."""
    data = request.get_json(silent=True) or {}

    try:
        reward = reward_service.update_reward(reward_id, data)
        return jsonify(reward.to_dict())
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to update reward {reward_id}')
        return internal_error('Failed to update reward', str(e))


@admin_bp.route('/rewards/<int:reward_id>', methods=['DELETE'])
@require_admin
def delete_reward(reward_id):
    try:
        reward_service.delete_reward(reward_id)
        return jsonify({'success': True})
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to delete reward {reward_id}')
        return internal_error('Failed to delete reward', str(e))


# ==============================================================================
# AFFILIATE TIERS
# ==============================================================================

@admin_bp.route('/affiliate-tiers', methods=['GET'])
@require_admin
def list_affiliate_tiers():
    """Thresholds and benefits per tier, lowest first."""
    thresholds = affiliate_tier_service.load_thresholds()
    return jsonify({
        'tiers': [{'tier': tier, **thresholds[tier]} for tier in TIER_ORDER]
    })


@admin_bp.route('/affiliate-tiers/<tier>', methods=['PUT'])
@require_admin
def update_affiliate_tier(tier):
    """
    Update a tier's thresholds or benefits.

    JSON body (all optional):
        min_total_referrals, min_total_points_earned, min_active_referrals,
        commission_bonus, description
    """
    data = request.get_json(silent=True) or {}

    try:
        row = affiliate_tier_service.update_threshold(tier, data)
        cache.delete_memoized(estimate_commission_rate)
        return jsonify(row.to_dict())
    except LoyaltyError as e:
        return error_from_exception(e)
    except Exception as e:
        current_app.logger.exception(f'Failed to update affiliate tier {tier}')
        return internal_error('Failed to update affiliate tier', str(e))


@admin_bp.route('/affiliate-tiers/distribution', methods=['GET'])
@require_admin
def tier_distribution():
    """Number of affiliates per tier."""
    return jsonify(affiliate_tier_service.tier_distribution())


@admin_bp.route('/affiliate-tiers/promote-all', methods=['POST'])
@require_admin
def promote_all():
    """Recompute every affiliate's tier, promoting where qualified."""
    try:
        return jsonify(affiliate_tier_service.promote_all())
    except Exception as e:
        current_app.logger.exception('Failed to promote affiliates')
        return internal_error('Failed to promote affiliates', str(e))
