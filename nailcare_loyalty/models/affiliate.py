"""
Affiliate program models.

An Affiliate is a user enrolled in the referral program. Each referred user
has at most one AffiliateReferral, which moves PENDING -> ACTIVE on the
referred user's first completed order.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict
from ..extensions import db

logger = logging.getLogger(__name__)


# ==================== Enums ====================

class AffiliateTier(str, Enum):
    BRONZE = 'BRONZE'
    SILVER = 'SILVER'
    GOLD = 'GOLD'
    PLATINUM = 'PLATINUM'


# Lowest to highest
TIER_ORDER = [
    AffiliateTier.BRONZE.value,
    AffiliateTier.SILVER.value,
    AffiliateTier.GOLD.value,
    AffiliateTier.PLATINUM.value,
]


class ReferralStatus(str, Enum):
    PENDING = 'PENDING'
    ACTIVE = 'ACTIVE'


# Seed values for AffiliateTierThreshold. A tier is reached only when all
# three minimums hold at once.
DEFAULT_TIER_THRESHOLDS = {
    'BRONZE': {
        'min_total_referrals': 0,
        'min_total_points_earned': 0,
        'min_active_referrals': 0,
        'commission_bonus': 0,
        'description': 'Standard commission rates, access to all rewards',
    },
    'SILVER': {
        'min_total_referrals': 10,
        'min_total_points_earned': 500,
        'min_active_referrals': 5,
        'commission_bonus': 5,
        'description': '5% commission bonus, priority support, exclusive rewards',
    },
    'GOLD': {
        'min_total_referrals': 50,
        'min_total_points_earned': 2500,
        'min_active_referrals': 25,
        'commission_bonus': 10,
        'description': '10% commission bonus, dedicated support, premium rewards',
    },
    'PLATINUM': {
        'min_total_referrals': 200,
        'min_total_points_earned': 10000,
        'min_active_referrals': 100,
        'commission_bonus': 20,
        'description': '20% commission bonus, VIP support, exclusive rewards, early access',
    },
}


# ==================== Models ====================

class Affiliate(db.Model):
    """
    Referral program enrollment, one per user.

    The spendable balance is not stored here; current_points_balance reads
    through to User.points_balance.
    """
    __tablename__ = 'affiliates'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    affiliate_code = db.Column(db.String(20), unique=True, nullable=False)

    is_active = db.Column(db.Boolean, default=True)
    approved_at = db.Column(db.DateTime)
    approved_by = db.Column(db.String(100))

    tier = db.Column(db.String(20), nullable=False, default=AffiliateTier.BRONZE.value)
    tier_updated_at = db.Column(db.DateTime)

    # Running counters
    total_referrals = db.Column(db.Integer, nullable=False, default=0)
    active_referrals = db.Column(db.Integer, nullable=False, default=0)
    total_points_earned = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('affiliate', uselist=False))
    referrals = db.relationship('AffiliateReferral', backref='affiliate', lazy='dynamic')

    def __repr__(self):
        return f'<Affiliate {self.affiliate_code} ({self.tier})>'

    @property
    def is_approved(self) -> bool:
        return self.approved_at is not None

    @property
    def current_points_balance(self) -> int:
        return (self.user.points_balance or 0) if self.user else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'affiliate_code': self.affiliate_code,
            'is_active': self.is_active,
            'is_approved': self.is_approved,
            'approved_at': self.approved_at.isoformat() if self.approved_at else None,
            'approved_by': self.approved_by,
            'tier': self.tier,
            'tier_updated_at': self.tier_updated_at.isoformat() if self.tier_updated_at else None,
            'total_referrals': self.total_referrals,
            'active_referrals': self.active_referrals,
            'total_points_earned': self.total_points_earned,
            'current_points_balance': self.current_points_balance,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class AffiliateReferral(db.Model):
    """Link between an affiliate and a user who signed up with their code."""
    __tablename__ = 'affiliate_referrals'

    id = db.Column(db.Integer, primary_key=True)
    affiliate_id = db.Column(db.Integer, db.ForeignKey('affiliates.id'), nullable=False)
    referred_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)

    status = db.Column(db.String(20), nullable=False, default=ReferralStatus.PENDING.value)
    first_order_id = db.Column(db.Integer)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    activated_at = db.Column(db.DateTime)

    referred_user = db.relationship('User', foreign_keys=[referred_user_id])
    orders = db.relationship('Order', backref='affiliate_referral', lazy='dynamic')

    __table_args__ = (
        db.Index('ix_affiliate_referrals_affiliate_status', 'affiliate_id', 'status'),
    )

    def __repr__(self):
        return f'<AffiliateReferral {self.id}: affiliate={self.affiliate_id} user={self.referred_user_id}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'affiliate_id': self.affiliate_id,
            'referred_user_id': self.referred_user_id,
            'referred_user_email': self.referred_user.email if self.referred_user else None,
            'status': self.status,
            'first_order_id': self.first_order_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'activated_at': self.activated_at.isoformat() if self.activated_at else None,
        }


class AffiliateTierThreshold(db.Model):
    """
    Admin-editable tier thresholds and benefit messaging.

    Missing rows fall back to DEFAULT_TIER_THRESHOLDS.
    """
    __tablename__ = 'affiliate_tier_thresholds'

    id = db.Column(db.Integer, primary_key=True)
    tier = db.Column(db.String(20), unique=True, nullable=False)

    min_total_referrals = db.Column(db.Integer, nullable=False, default=0)
    min_total_points_earned = db.Column(db.Integer, nullable=False, default=0)
    min_active_referrals = db.Column(db.Integer, nullable=False, default=0)

    commission_bonus = db.Column(db.Integer, nullable=False, default=0)  # Percent
    description = db.Column(db.String(255))

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<AffiliateTierThreshold {self.tier}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tier': self.tier,
            'min_total_referrals': self.min_total_referrals,
            'min_total_points_earned': self.min_total_points_earned,
            'min_active_referrals': self.min_active_referrals,
            'commission_bonus': self.commission_bonus,
            'description': self.description,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


def seed_tier_thresholds():
    """Seed default tier thresholds if none exist."""
    if AffiliateTierThreshold.query.count() > 0:
        return 0

    for tier, values in DEFAULT_TIER_THRESHOLDS.items():
        db.session.add(AffiliateTierThreshold(tier=tier, **values))
    db.session.commit()
    logger.info('Seeded %d affiliate tier thresholds', len(DEFAULT_TIER_THRESHOLDS))
    return len(DEFAULT_TIER_THRESHOLDS)
