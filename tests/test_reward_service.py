"""
Tests for reward redemption and reward management.
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

from nailcare_loyalty.extensions import db
from nailcare_loyalty.models import (
    Coupon,
    Notification,
    PointsRedemption,
    PointsTransaction,
    Reward,
    User,
)
from nailcare_loyalty.services.points_service import points_service
from nailcare_loyalty.services.reward_service import (
    reward_service,
    generate_redemption_code,
    redemption_status,
)
from nailcare_loyalty.utils.exceptions import (
    BusinessRuleError,
    InsufficientPointsError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)


def fund(user, amount):
    points_service.award_points(user.id, amount, 'AFFILIATE_PURCHASE')


class TestRedeem:

    def test_redeem_end_to_end(self, app, sample_user, reward):
        fund(sample_user, 250)

        result = reward_service.redeem_reward(sample_user.id, reward.id)

        assert db.session.get(User, sample_user.id).points_balance == 50

        coupon = result['coupon']
        assert coupon.code == result['coupon_code']
        assert coupon.code.startswith('REW')
        assert coupon.source == 'REDEMPTION'
        assert coupon.discount_type == 'FIXED'
        assert coupon.discount_value == Decimal('10.00')
        assert coupon.min_purchase_amount == Decimal('30.00')

        redemption = result['redemption']
        assert redemption.coupon_id == coupon.id
        assert redemption.points_spent == 200
        assert redemption.status in ('ACTIVE', 'PENDING')

        db.session.refresh(reward)
        assert reward.redeemed_count == 1

        txn = PointsTransaction.query.filter_by(user_id=sample_user.id, type='REDEMPTION').one()
        assert txn.amount == -200
        assert txn.balance_after == 50

    def test_insufficient_points_changes_nothing(self, app, sample_user, reward):
        fund(sample_user, 150)

        with pytest.raises(InsufficientPointsError):
            reward_service.redeem_reward(sample_user.id, reward.id)

        db.session.refresh(reward)
        assert reward.redeemed_count == 0
        assert db.session.get(User, sample_user.id).points_balance == 150
        assert PointsRedemption.query.count() == 0
        assert Coupon.query.count() == 0

    def test_failure_inside_transaction_rolls_back(self, app, sample_user, reward):
        fund(sample_user, 300)

        with patch('nailcare_loyalty.services.reward_service.PointsRedemption',
                   side_effect=RuntimeError('db down')):
            with pytest.raises(RuntimeError):
                reward_service.redeem_reward(sample_user.id, reward.id)

        db.session.refresh(reward)
        assert reward.redeemed_count == 0
        assert db.session.get(User, sample_user.id).points_balance == 300
        assert Coupon.query.count() == 0

    def test_inactive_reward(self, app, sample_user, reward):
        reward.is_active = False
        db.session.commit()
        fund(sample_user, 500)

        with pytest.raises(BusinessRuleError, match='Reward is not available'):
            reward_service.redeem_reward(sample_user.id, reward.id)

    def test_reward_outside_window(self, app, sample_user, reward):
        reward.valid_until = datetime.utcnow() - timedelta(minutes=1)
        db.session.commit()
        fund(sample_user, 500)

        with pytest.raises(BusinessRuleError, match='Reward is not currently valid'):
            reward_service.redeem_reward(sample_user.id, reward.id)

    def test_out_of_stock(self, app, sample_user, reward):
        reward.stock = 1
        reward.redeemed_count = 1
        db.session.commit()
        fund(sample_user, 500)

        with pytest.raises(BusinessRuleError, match='Reward is out of stock'):
            reward_service.redeem_reward(sample_user.id, reward.id)

    def test_unknown_reward(self, app, sample_user):
        with pytest.raises(NotFoundError):
            reward_service.redeem_reward(sample_user.id, 999)

    def test_first_redemption_milestone_for_affiliates(self, app, affiliate, affiliate_user, reward):
        fund(affiliate_user, 600)

        reward_service.redeem_reward(affiliate_user.id, reward.id)
        reward_service.redeem_reward(affiliate_user.id, reward.id)

        assert Notification.query.filter_by(
            user_id=affiliate_user.id, title='First Reward Redeemed!'
        ).count() == 1


class TestRedemptionStatus:

    def test_status_from_coupon(self, app):
        now = datetime.utcnow()
        assert redemption_status(None) == 'EXPIRED'
        assert redemption_status(Coupon(is_active=True, used_count=1, valid_from=now)) == 'USED'
        assert redemption_status(Coupon(is_active=False, used_count=0, valid_from=now)) == 'EXPIRED'
        assert redemption_status(
            Coupon(is_active=True, used_count=0, valid_from=now + timedelta(days=1))
        ) == 'PENDING'
        assert redemption_status(Coupon(is_active=True, used_count=0, valid_from=now)) == 'ACTIVE'

    def test_generated_codes_are_unique(self):
        codes = {generate_redemption_code() for _ in range(50)}
        assert len(codes) == 50

    def test_list_user_coupons_filters_by_live_status(self, app, sample_user, reward):
        fund(sample_user, 400)
        first = reward_service.redeem_reward(sample_user.id, reward.id)
        reward_service.redeem_reward(sample_user.id, reward.id)

        first['coupon'].used_count = 1
        db.session.commit()

        assert len(reward_service.list_user_coupons(sample_user.id)) == 2
        used = reward_service.list_user_coupons(sample_user.id, 'used')
        assert [r['coupon_code'] for r in used] == [first['coupon_code']]

        with pytest.raises(ValidationError):
            reward_service.list_user_coupons(sample_user.id, 'LOST')


class TestRewardManagement:

    def test_available_rewards(self, app, reward):
        db.session.add(Reward(name='Sold out', points_cost=50, discount_type='FIXED',
                              discount_value=Decimal('5'), stock=0, redeemed_count=0))
        db.session.add(Reward(name='Hidden', points_cost=10, discount_type='FIXED',
                              discount_value=Decimal('1'), is_active=False, redeemed_count=0))
        db.session.commit()

        assert [r.name for r in reward_service.list_available_rewards()] == ['10€ off']

    def test_create_validates_required_fields(self, app):
        with pytest.raises(ValidationError):
            reward_service.create_reward({'name': 'Missing cost', 'discount_type': 'FIXED',
                                          'discount_value': 5})

    def test_create_rejects_percentage_over_100(self, app):
        with pytest.raises(ValidationError):
            reward_service.create_reward({'name': 'Too much', 'points_cost': 10,
                                          'discount_type': 'PERCENTAGE', 'discount_value': 150})

    def test_pricing_frozen_after_redemption(self, app, sample_user, reward):
        fund(sample_user, 200)
        reward_service.redeem_reward(sample_user.id, reward.id)

        with pytest.raises(StateConflictError) as exc:
            reward_service.update_reward(reward.id, {'points_cost': 100})
        assert exc.value.status_code == 409

        updated = reward_service.update_reward(reward.id, {'name': 'Ten off', 'is_active': False})
        assert updated.name == 'Ten off'
        assert updated.points_cost == 200

    def test_cannot_delete_redeemed_reward(self, app, sample_user, reward):
        fund(sample_user, 200)
        reward_service.redeem_reward(sample_user.id, reward.id)

        with pytest.raises(BusinessRuleError) as exc:
            reward_service.delete_reward(reward.id)
        assert exc.value.status_code == 400
        assert exc.value.code == 'REWARD_REDEEMED'

    def test_delete_unredeemed_reward(self, app, reward):
        reward_service.delete_reward(reward.id)
        assert db.session.get(Reward, reward.id) is None
