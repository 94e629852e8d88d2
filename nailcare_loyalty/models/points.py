"""
Points ledger and earning configuration models.

The ledger is append-only: every balance change inserts one
PointsTransaction carrying the balance before and after it, and the same
transaction updates User.points_balance.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List
from ..extensions import db


# ==================== Enums ====================

class PointsTransactionType(str, Enum):
    """Ledger entry types."""
    AFFILIATE_REFERRAL = 'AFFILIATE_REFERRAL'   # Referred user signed up
    AFFILIATE_PURCHASE = 'AFFILIATE_PURCHASE'   # Own or referred order
    REDEMPTION = 'REDEMPTION'                   # Spent on a reward (negative)
    MANUAL_ADJUSTMENT = 'MANUAL_ADJUSTMENT'     # Admin correction (+/-)


class PointsActionType(str, Enum):
    """Actions a PointsConfiguration can price."""
    REFERRAL_SIGNUP = 'REFERRAL_SIGNUP'
    REFERRAL_FIRST_ORDER = 'REFERRAL_FIRST_ORDER'
    REFERRAL_REPEAT_ORDER = 'REFERRAL_REPEAT_ORDER'
    OWN_PURCHASE = 'OWN_PURCHASE'


# ==================== Models ====================

class PointsTransaction(db.Model):
    """
    Immutable ledger entry.

    Never updated or deleted. amount is signed: positive for awards,
    negative for deductions and redemptions.
    """
    __tablename__ = 'points_transactions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)

    amount = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(30), nullable=False)  # PointsTransactionType

    reference_id = db.Column(db.String(100))  # Order id, reward id, admin id
    description = db.Column(db.String(500))

    balance_before = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('points_transactions', lazy='dynamic'))

    __table_args__ = (
        db.Index('ix_points_transactions_user_created', 'user_id', 'created_at'),
    )

    def __repr__(self):
        return f'<PointsTransaction {self.id}: {self.amount} pts for user {self.user_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'amount': self.amount,
            'type': self.type,
            'reference_id': self.reference_id,
            'description': self.description,
            'balance_before': self.balance_before,
            'balance_after': self.balance_after,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class PointsConfiguration(db.Model):
    """
    Admin-defined earning rule for one action type.

    Either a flat points_amount or a tiered_config of order-value bands:
        {"tiers": [{"min_order_value": 0, "max_order_value": 100, "points": 10},
                   {"min_order_value": 100, "max_order_value": null, "points": 25}]}

    When several active, in-window rows exist for an action type the most
    recently created one applies.
    """
    __tablename__ = 'points_configurations'

    id = db.Column(db.Integer, primary_key=True)
    action_type = db.Column(db.String(40), nullable=False)  # PointsActionType

    points_amount = db.Column(db.Integer)
    tiered_config = db.Column(db.JSON)

    min_order_value = db.Column(db.Numeric(10, 2))
    max_points_per_transaction = db.Column(db.Integer)

    is_active = db.Column(db.Boolean, default=True)
    valid_from = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    valid_until = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_points_configurations_action_active', 'action_type', 'is_active'),
    )

    def __repr__(self):
        return f'<PointsConfiguration {self.id}: {self.action_type}>'

    @property
    def tiers(self) -> List[Dict[str, Any]]:
        if not self.tiered_config:
            return []
        return self.tiered_config.get('tiers') or []

    def to_dict(self):
        return {
            'id': self.id,
            'action_type': self.action_type,
            'points_amount': self.points_amount,
            'tiered_config': self.tiered_config,
            'min_order_value': float(self.min_order_value) if self.min_order_value is not None else None,
            'max_points_per_transaction': self.max_points_per_transaction,
            'is_active': self.is_active,
            'valid_from': self.valid_from.isoformat() if self.valid_from else None,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
