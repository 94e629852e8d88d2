"""
In-app notifications for customers and admins.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class NotificationType(str, Enum):
    SYSTEM = 'SYSTEM'              # Tier promotions, milestones
    ORDER = 'ORDER'                # New order (admin)
    ORDER_STATUS = 'ORDER_STATUS'  # Order updates (customer)


class Notification(db.Model):
    """A user_id of None addresses every admin."""
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))

    type = db.Column(db.String(30), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    extra_data = db.Column(db.JSON)

    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Notification {self.type}: {self.title}>'

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'type': self.type,
            'title': self.title,
            'message': self.message,
            'extra_data': self.extra_data or {},
            'is_read': self.is_read,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
