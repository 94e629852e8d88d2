"""
Tests for coupon evaluation.

Checks run in a fixed order and the first failure is reported; the
discount is rounded to cents and never exceeds the subtotal.
"""
from datetime import datetime, timedelta
from decimal import Decimal

from nailcare_loyalty.extensions import db
from nailcare_loyalty.models import Coupon, CouponUserUsage, PointsRedemption
from nailcare_loyalty.services.coupon_service import coupon_service, to_money


def make_coupon(code='TEST10', **overrides):
    values = dict(
        code=code,
        discount_type='FIXED',
        discount_value=Decimal('10.00'),
        is_active=True,
        valid_from=datetime.utcnow() - timedelta(days=1),
        used_count=0,
    )
    values.update(overrides)
    coupon = Coupon(**values)
    db.session.add(coupon)
    db.session.commit()
    return coupon


class TestDiscount:

    def test_percentage_capped(self, app, percent_coupon):
        result = coupon_service.validate_coupon_code('SPRING20', Decimal('100'))

        assert result.valid
        assert result.discount_amount == Decimal('15.00')
        assert str(result.discount_amount) == '15.00'

    def test_percentage_under_cap(self, app, percent_coupon):
        result = coupon_service.validate_coupon_code('spring20', '50')
        assert result.discount_amount == Decimal('10.00')

    def test_fixed_capped_at_subtotal(self, app):
        make_coupon('BIG50', discount_value=Decimal('50'))

        result = coupon_service.validate_coupon_code('BIG50', Decimal('30'))
        assert result.discount_amount == Decimal('30.00')

    def test_rounds_half_up_to_cents(self, app):
        make_coupon('THIRD', discount_type='PERCENTAGE', discount_value=Decimal('15'))

        result = coupon_service.validate_coupon_code('THIRD', Decimal('33.30'))
        assert result.discount_amount == Decimal('5.00')

    def test_zero_max_discount_means_uncapped(self, app):
        make_coupon('NOCAP20', discount_type='PERCENTAGE', discount_value=Decimal('20'),
                    max_discount_amount=Decimal('0'))

        result = coupon_service.validate_coupon_code('NOCAP20', Decimal('100'))
        assert result.discount_amount == Decimal('20.00')

    def test_unparsable_subtotal_counts_as_zero(self):
        assert to_money('abc') == Decimal('0.00')
        assert to_money(None) == Decimal('0.00')


class TestCheckOrder:

    def test_unknown_code_is_404(self, app):
        result = coupon_service.validate_coupon_code('NOPE', Decimal('10'))

        assert not result.valid
        assert result.status_code == 404
        assert result.error == 'Invalid coupon code'

    def test_inactive(self, app):
        make_coupon(is_active=False)
        result = coupon_service.validate_coupon_code('TEST10', Decimal('100'))
        assert result.error == 'This coupon is not active'
        assert result.status_code == 400

    def test_not_yet_valid(self, app):
        make_coupon(valid_from=datetime.utcnow() + timedelta(days=2))
        result = coupon_service.validate_coupon_code('TEST10', Decimal('100'))
        assert result.error == 'This coupon is not yet valid'

    def test_expired(self, app):
        make_coupon(valid_until=datetime.utcnow() - timedelta(hours=1))
        result = coupon_service.validate_coupon_code('TEST10', Decimal('100'))
        assert result.error == 'This coupon has expired'

    def test_global_usage_limit(self, app):
        make_coupon(usage_limit=5, used_count=5)
        result = coupon_service.validate_coupon_code('TEST10', Decimal('100'))
        assert result.error == 'This coupon has reached its usage limit'

    def test_per_user_limit(self, app, sample_user, other_user):
        coupon = make_coupon(user_usage_limit=1)
        db.session.add(CouponUserUsage(coupon_id=coupon.id, user_id=sample_user.id, times_used=1))
        db.session.commit()

        blocked = coupon_service.validate_coupon_code('TEST10', Decimal('100'), user_id=sample_user.id)
        assert blocked.error == 'You have reached the maximum usage limit (1) for this coupon'

        allowed = coupon_service.validate_coupon_code('TEST10', Decimal('100'), user_id=other_user.id)
        assert allowed.valid

    def test_expired_reported_before_usage_limit(self, app):
        make_coupon(valid_until=datetime.utcnow() - timedelta(days=1), usage_limit=1, used_count=1)
        result = coupon_service.validate_coupon_code('TEST10', Decimal('100'))
        assert result.error == 'This coupon has expired'


class TestCartRestrictions:

    def test_included_products_must_cover_every_line(self, app, catalog):
        make_coupon(included_products=[catalog['gel'].id])
        lines = [{'product_id': catalog['gel'].id, 'quantity': 1},
                 {'product_id': catalog['file'].id, 'quantity': 1}]

        result = coupon_service.validate_coupon_code('TEST10', Decimal('65'), lines)
        assert result.error == (
            'This coupon can only be applied to specific products. '
            'Please remove other items from your cart.'
        )

        only_gel = coupon_service.validate_coupon_code('TEST10', Decimal('25'), lines[:1])
        assert only_gel.valid

    def test_excluded_products(self, app, catalog):
        make_coupon(excluded_products=[catalog['file'].id])
        lines = [{'product_id': catalog['file'].id, 'quantity': 1}]

        result = coupon_service.validate_coupon_code('TEST10', Decimal('40'), lines)
        assert result.error == 'This coupon cannot be used with certain products in your cart'

    def test_included_categories(self, app, catalog):
        make_coupon(included_categories=[catalog['polish'].id])
        lines = [{'product_id': catalog['file'].id, 'quantity': 1}]

        result = coupon_service.validate_coupon_code('TEST10', Decimal('40'), lines)
        assert result.error == 'This coupon can only be applied to products in specific categories'

    def test_excluded_categories(self, app, catalog):
        make_coupon(excluded_categories=[catalog['tools'].id])
        lines = [{'product_id': catalog['gel'].id, 'quantity': 1},
                 {'product_id': catalog['file'].id, 'quantity': 1}]

        result = coupon_service.validate_coupon_code('TEST10', Decimal('65'), lines)
        assert result.error == 'This coupon cannot be used with products from certain categories in your cart'

    def test_restrictions_skipped_without_cart_items(self, app, catalog):
        make_coupon(included_products=[catalog['gel'].id])
        assert coupon_service.validate_coupon_code('TEST10', Decimal('40')).valid


class TestMinimumPurchase:

    def test_below_minimum(self, app):
        make_coupon(min_purchase_amount=Decimal('50.00'))

        result = coupon_service.validate_coupon_code('TEST10', Decimal('49.99'))
        assert result.error == 'Minimum purchase amount of 50.00€ is required for this coupon'

    def test_minimum_including_delivery(self, app):
        """Delivery (10.00) counts toward a minimum that includes it."""
        make_coupon(min_purchase_amount=Decimal('50.00'), min_purchase_includes_delivery=True)

        assert coupon_service.validate_coupon_code('TEST10', Decimal('40.00')).valid

        result = coupon_service.validate_coupon_code('TEST10', Decimal('39.99'))
        assert result.error == (
            'Minimum purchase amount of 40.00€ is required for this coupon (excluding delivery)'
        )


class TestRecordUsage:

    def test_counts_global_and_per_user(self, app, sample_user):
        make_coupon()

        coupon_service.record_coupon_usage('test10', sample_user.id)
        coupon_service.record_coupon_usage('TEST10', sample_user.id)

        coupon = coupon_service.get_by_code('TEST10')
        db.session.refresh(coupon)
        assert coupon.used_count == 2
        assert coupon_service.user_usage_count(coupon.id, sample_user.id) == 2

    def test_marks_redemption_used(self, app, sample_user, reward):
        coupon = make_coupon('REW123ABC')
        redemption = PointsRedemption(
            user_id=sample_user.id, reward_id=reward.id, coupon_id=coupon.id,
            coupon_code=coupon.code, points_spent=200, status='ACTIVE',
        )
        db.session.add(redemption)
        db.session.commit()

        coupon_service.record_coupon_usage(coupon.code, sample_user.id)

        db.session.refresh(redemption)
        assert redemption.status == 'USED'
        assert redemption.used_at is not None

    def test_unknown_code_is_noop(self, app, sample_user):
        assert coupon_service.record_coupon_usage('MISSING', sample_user.id) is None
