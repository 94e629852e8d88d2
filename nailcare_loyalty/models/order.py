"""
Order models, created when a Stripe payment succeeds.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class OrderStatus(str, Enum):
    PENDING = 'PENDING'
    PROCESSING = 'PROCESSING'
    SHIPPED = 'SHIPPED'
    DELIVERED = 'DELIVERED'
    CANCELLED = 'CANCELLED'


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)

    subtotal = db.Column(db.Numeric(10, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(10, 2), default=0)
    total = db.Column(db.Numeric(10, 2), nullable=False)  # Amount actually charged
    coupon_code = db.Column(db.String(50))

    payment_intent_id = db.Column(db.String(100), unique=True)
    status = db.Column(db.String(20), default=OrderStatus.PROCESSING.value)
    shipping_address = db.Column(db.Text)

    affiliate_referral_id = db.Column(db.Integer, db.ForeignKey('affiliate_referrals.id'))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', backref='orders')
    items = db.relationship('OrderItem', backref='order', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Order {self.id}: {self.total}>'

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'subtotal': float(self.subtotal),
            'discount_amount': float(self.discount_amount or 0),
            'total': float(self.total),
            'coupon_code': self.coupon_code,
            'payment_intent_id': self.payment_intent_id,
            'status': self.status,
            'items': [item.to_dict() for item in self.items],
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)  # Unit price at purchase time

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'quantity': self.quantity,
            'price': float(self.price),
        }
