"""
Business logic services for the loyalty back-end.
"""
from .points_service import PointsService, points_service
from .affiliate_service import AffiliateService, affiliate_service
from .affiliate_tiers import AffiliateTierService, affiliate_tier_service, calculate_tier
from .coupon_service import CouponService, CouponEvaluation, coupon_service
from .reward_service import RewardService, reward_service
from .checkout_service import CheckoutService, checkout_service

__all__ = [
    'PointsService',
    'points_service',
    'AffiliateService',
    'affiliate_service',
    'AffiliateTierService',
    'affiliate_tier_service',
    'calculate_tier',
    'CouponService',
    'CouponEvaluation',
    'coupon_service',
    'RewardService',
    'reward_service',
    'CheckoutService',
    'checkout_service',
]
