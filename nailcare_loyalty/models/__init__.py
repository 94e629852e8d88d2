"""
Database models for the nail-care loyalty back-end.
Points ledger, affiliates, coupons and rewards for the storefront.
"""
from .user import User, UserRole
from .catalog import Category, Product, Cart, CartItem
from .order import Order, OrderItem, OrderStatus
from .points import (
    PointsTransactionType,
    PointsActionType,
    PointsTransaction,
    PointsConfiguration,
)
from .affiliate import (
    # Enums
    AffiliateTier,
    ReferralStatus,
    TIER_ORDER,
    # Models
    Affiliate,
    AffiliateReferral,
    AffiliateTierThreshold,
    # Seeders
    DEFAULT_TIER_THRESHOLDS,
    seed_tier_thresholds,
)
from .coupon import Coupon, CouponUserUsage, CouponSource, DiscountType
from .reward import Reward, PointsRedemption, RedemptionStatus
from .notification import Notification, NotificationType

__all__ = [
    'User',
    'UserRole',
    'Category',
    'Product',
    'Cart',
    'CartItem',
    'Order',
    'OrderItem',
    'OrderStatus',
    'PointsTransactionType',
    'PointsActionType',
    'PointsTransaction',
    'PointsConfiguration',
    'AffiliateTier',
    'ReferralStatus',
    'TIER_ORDER',
    'Affiliate',
    'AffiliateReferral',
    'AffiliateTierThreshold',
    'DEFAULT_TIER_THRESHOLDS',
    'seed_tier_thresholds',
    'Coupon',
    'CouponUserUsage',
    'CouponSource',
    'DiscountType',
    'Reward',
    'PointsRedemption',
    'RedemptionStatus',
    'Notification',
    'NotificationType',
]
