"""
Reward catalog and redemption models.

Redeeming a Reward spends points and mints a single-purpose Coupon; the
PointsRedemption row links the three.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class RedemptionStatus(str, Enum):
    PENDING = 'PENDING'    # Coupon not yet valid
    ACTIVE = 'ACTIVE'      # Coupon usable
    USED = 'USED'          # Coupon applied to an order
    EXPIRED = 'EXPIRED'    # Coupon past validity or deactivated


class Reward(db.Model):
    """Catalog item purchasable with points."""
    __tablename__ = 'rewards'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)

    points_cost = db.Column(db.Integer, nullable=False)

    # Shape of the coupon minted on redemption
    discount_type = db.Column(db.String(20), nullable=False)  # DiscountType
    discount_value = db.Column(db.Numeric(10, 2), nullable=False)
    min_purchase_amount = db.Column(db.Numeric(10, 2))
    max_discount_amount = db.Column(db.Numeric(10, 2))

    stock = db.Column(db.Integer)  # None = unlimited
    redeemed_count = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, default=True)
    valid_from = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    valid_until = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<Reward {self.name} ({self.points_cost} pts)>'

    @property
    def is_in_stock(self) -> bool:
        return self.stock is None or self.redeemed_count < self.stock

    def is_in_window(self, now=None) -> bool:
        now = now or datetime.utcnow()
        if self.valid_from and now < self.valid_from:
            return False
        if self.valid_until and now > self.valid_until:
            return False
        return True

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'points_cost': self.points_cost,
            'discount_type': self.discount_type,
            'discount_value': float(self.discount_value),
            'min_purchase_amount': float(self.min_purchase_amount) if self.min_purchase_amount is not None else None,
            'max_discount_amount': float(self.max_discount_amount) if self.max_discount_amount is not None else None,
            'stock': self.stock,
            'redeemed_count': self.redeemed_count,
            'is_active': self.is_active,
            'valid_from': self.valid_from.isoformat() if self.valid_from else None,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
        }


class PointsRedemption(db.Model):
    """
    One reward redemption by a user.

    The stored status is a snapshot; reads recompute it from the coupon.
    """
    __tablename__ = 'points_redemptions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    reward_id = db.Column(db.Integer, db.ForeignKey('rewards.id'), nullable=False)
    coupon_id = db.Column(db.Integer, db.ForeignKey('coupons.id'), nullable=False)
    coupon_code = db.Column(db.String(50), nullable=False)

    points_spent = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=RedemptionStatus.ACTIVE.value)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    used_at = db.Column(db.DateTime)

    reward = db.relationship('Reward')
    coupon = db.relationship('Coupon')

    __table_args__ = (
        db.Index('ix_points_redemptions_user_created', 'user_id', 'created_at'),
    )

    def __repr__(self):
        return f'<PointsRedemption {self.id}: {self.coupon_code}>'

    def to_dict(self, status=None):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'reward_id': self.reward_id,
            'reward': self.reward.to_dict() if self.reward else None,
            'coupon_id': self.coupon_id,
            'coupon_code': self.coupon_code,
            'coupon': self.coupon.to_dict() if self.coupon else None,
            'points_spent': self.points_spent,
            'status': status or self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'used_at': self.used_at.isoformat() if self.used_at else None,
        }
