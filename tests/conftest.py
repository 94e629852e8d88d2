"""
Shared pytest fixtures.

Each test gets a fresh app on in-memory SQLite with the schema created from
the models. Fixtures run inside the app context pushed by `app`, so the
objects they return stay attached to the session used by the test client.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from nailcare_loyalty import create_app
from nailcare_loyalty.extensions import db
from nailcare_loyalty.middleware.auth import create_session_token
from nailcare_loyalty.models import (
    User,
    UserRole,
    Affiliate,
    Category,
    Product,
    Cart,
    CartItem,
    Coupon,
    Reward,
    PointsConfiguration,
)


@pytest.fixture
def app():
    """Create test application."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(email, name=None, role=UserRole.CUSTOMER.value, points_balance=0):
    user = User(email=email, name=name, role=role, points_balance=points_balance)
    db.session.add(user)
    db.session.commit()
    return user


def bearer(user):
    return {'Authorization': f'Bearer {create_session_token(user.id, user.role)}'}


@pytest.fixture
def sample_user(app):
    return make_user('customer@example.com', 'Test Customer')


@pytest.fixture
def other_user(app):
    return make_user('friend@example.com', 'Referred Friend')


@pytest.fixture
def admin_user(app):
    return make_user('admin@example.com', 'Shop Admin', role=UserRole.ADMIN.value)


@pytest.fixture
def auth_headers(sample_user):
    return bearer(sample_user)


@pytest.fixture
def other_headers(other_user):
    return bearer(other_user)


@pytest.fixture
def admin_headers(admin_user):
    return bearer(admin_user)


@pytest.fixture
def affiliate_user(app):
    return make_user('nailpro@example.com', 'Nail Pro')


@pytest.fixture
def affiliate(affiliate_user):
    """Approved, active affiliate with a fixed code."""
    affiliate = Affiliate(
        user_id=affiliate_user.id,
        affiliate_code='NAILPRO1',
        is_active=True,
        approved_at=datetime.utcnow(),
        approved_by='auto',
    )
    db.session.add(affiliate)
    db.session.commit()
    return affiliate


@pytest.fixture
def affiliate_headers(affiliate):
    return bearer(affiliate.user)


@pytest.fixture
def points_configs(app):
    """One active rule per action type."""
    configs = [
        PointsConfiguration(action_type='REFERRAL_SIGNUP', points_amount=50),
        PointsConfiguration(action_type='REFERRAL_FIRST_ORDER', points_amount=100),
        PointsConfiguration(action_type='REFERRAL_REPEAT_ORDER', points_amount=20),
        PointsConfiguration(
            action_type='OWN_PURCHASE',
            tiered_config={'tiers': [
                {'min_order_value': 0, 'max_order_value': 100, 'points': 10},
                {'min_order_value': 100, 'max_order_value': None, 'points': 25},
            ]},
        ),
    ]
    for config in configs:
        config.valid_from = datetime.utcnow() - timedelta(days=1)
        config.is_active = True
        db.session.add(config)
    db.session.commit()
    return {config.action_type: config for config in configs}


@pytest.fixture
def catalog(app):
    """Two categories with one product each."""
    polish = Category(name='Polish', slug='polish')
    tools = Category(name='Tools', slug='tools')
    db.session.add_all([polish, tools])
    db.session.flush()

    gel = Product(name='Gel Polish Red', price=Decimal('25.00'), category_id=polish.id)
    file = Product(name='Glass Nail File', price=Decimal('40.00'), category_id=tools.id)
    db.session.add_all([gel, file])
    db.session.commit()
    return {'polish': polish, 'tools': tools, 'gel': gel, 'file': file}


@pytest.fixture
def cart(sample_user, catalog):
    """2 x gel (50.00) + 1 x file (40.00) = 90.00."""
    cart = Cart(user_id=sample_user.id)
    cart.items.append(CartItem(product_id=catalog['gel'].id, quantity=2))
    cart.items.append(CartItem(product_id=catalog['file'].id, quantity=1))
    db.session.add(cart)
    db.session.commit()
    return cart


@pytest.fixture
def percent_coupon(app):
    """20% off, capped at 15.00."""
    coupon = Coupon(
        code='SPRING20',
        description='Spring sale',
        discount_type='PERCENTAGE',
        discount_value=Decimal('20'),
        max_discount_amount=Decimal('15.00'),
        is_active=True,
        valid_from=datetime.utcnow() - timedelta(days=1),
        used_count=0,
    )
    db.session.add(coupon)
    db.session.commit()
    return coupon


@pytest.fixture
def reward(app):
    """200 points for 10.00 off."""
    reward = Reward(
        name='10€ off',
        description='Ten euros off your next order',
        points_cost=200,
        discount_type='FIXED',
        discount_value=Decimal('10.00'),
        min_purchase_amount=Decimal('30.00'),
        is_active=True,
        valid_from=datetime.utcnow() - timedelta(days=1),
        redeemed_count=0,
    )
    db.session.add(reward)
    db.session.commit()
    return reward
