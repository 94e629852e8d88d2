"""
Coupon models.

Coupons are created by admins or minted by reward redemption. Usage is
counted globally on the coupon and per user in CouponUserUsage.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class DiscountType(str, Enum):
    PERCENTAGE = 'PERCENTAGE'
    FIXED = 'FIXED'


class CouponSource(str, Enum):
    ADMIN = 'ADMIN'
    REDEMPTION = 'REDEMPTION'


class Coupon(db.Model):
    """
    Discount code.

    Product and category eligibility lists hold integer ids. Empty or null
    lists mean no restriction.
    """
    __tablename__ = 'coupons'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)  # Stored upper-case
    description = db.Column(db.String(500))

    discount_type = db.Column(db.String(20), nullable=False)  # DiscountType
    discount_value = db.Column(db.Numeric(10, 2), nullable=False)

    min_purchase_amount = db.Column(db.Numeric(10, 2))
    min_purchase_includes_delivery = db.Column(db.Boolean, default=False)
    max_discount_amount = db.Column(db.Numeric(10, 2))

    included_products = db.Column(db.JSON)
    excluded_products = db.Column(db.JSON)
    included_categories = db.Column(db.JSON)
    excluded_categories = db.Column(db.JSON)

    usage_limit = db.Column(db.Integer)
    used_count = db.Column(db.Integer, nullable=False, default=0)
    user_usage_limit = db.Column(db.Integer)

    is_active = db.Column(db.Boolean, default=True)
    valid_from = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    valid_until = db.Column(db.DateTime)

    source = db.Column(db.String(20), nullable=False, default=CouponSource.ADMIN.value)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<Coupon {self.code}>'

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'description': self.description,
            'discount_type': self.discount_type,
            'discount_value': float(self.discount_value),
            'min_purchase_amount': float(self.min_purchase_amount) if self.min_purchase_amount is not None else None,
            'min_purchase_includes_delivery': bool(self.min_purchase_includes_delivery),
            'max_discount_amount': float(self.max_discount_amount) if self.max_discount_amount is not None else None,
            'included_products': self.included_products or [],
            'excluded_products': self.excluded_products or [],
            'included_categories': self.included_categories or [],
            'excluded_categories': self.excluded_categories or [],
            'usage_limit': self.usage_limit,
            'used_count': self.used_count,
            'user_usage_limit': self.user_usage_limit,
            'is_active': self.is_active,
            'valid_from': self.valid_from.isoformat() if self.valid_from else None,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'source': self.source,
        }


class CouponUserUsage(db.Model):
    """Per-user usage counter for a coupon."""
    __tablename__ = 'coupon_user_usages'

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey('coupons.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    times_used = db.Column(db.Integer, nullable=False, default=0)

    last_used_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('coupon_id', 'user_id', name='uq_coupon_user_usage'),
    )

    def __repr__(self):
        return f'<CouponUserUsage coupon={self.coupon_id} user={self.user_id}: {self.times_used}>'
