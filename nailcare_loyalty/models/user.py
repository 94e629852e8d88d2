"""
User model.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class UserRole(str, Enum):
    """Storefront roles."""
    CUSTOMER = 'CUSTOMER'
    ADMIN = 'ADMIN'


class User(db.Model):
    """
    Storefront account.

    points_balance is the one denormalized running total of the points
    ledger; every ledger insert updates it in the same transaction.
    """
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(255))
    role = db.Column(db.String(20), nullable=False, default=UserRole.CUSTOMER.value)

    points_balance = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<User {self.id}: {self.email}>'

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'points_balance': self.points_balance or 0,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
