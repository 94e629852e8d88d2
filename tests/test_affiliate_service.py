"""
Tests for the Affiliate Service.

Covers enrollment, code generation, referral creation and activation,
claiming a referral by code, and the earnings breakdown.
"""
import pytest
from datetime import datetime
from unittest.mock import patch

from nailcare_loyalty.extensions import db
from nailcare_loyalty.models import Affiliate, AffiliateReferral, Notification, PointsTransaction
from nailcare_loyalty.services.affiliate_service import (
    affiliate_service,
    estimate_commission_rate,
    DEFAULT_COMMISSION_RATE,
)
from nailcare_loyalty.utils.exceptions import BusinessRuleError, NotFoundError, ValidationError


class TestAffiliateCode:

    def test_code_from_email_local_part(self, app, sample_user):
        code = affiliate_service.generate_affiliate_code(sample_user.id, 'jane.doe+nails@example.com')

        assert code.startswith('JANEDOEN')
        assert len(code) == 12
        assert code.isalnum() and code.isupper()

    def test_fallback_after_collisions(self, app, affiliate):
        """Every random candidate collides, so the deterministic code is used."""
        with patch('nailcare_loyalty.services.affiliate_service.random.choices',
                   return_value=list('PRO1')):
            code = affiliate_service.generate_affiliate_code(12345, 'nail@example.com')

        assert code == 'AFF12345'


class TestEnrollment:

    def test_get_or_create_is_idempotent(self, app, sample_user):
        first = affiliate_service.get_or_create_affiliate(sample_user.id)
        second = affiliate_service.get_or_create_affiliate(sample_user.id)

        assert first.id == second.id
        assert Affiliate.query.filter_by(user_id=sample_user.id).count() == 1

    def test_new_affiliate_is_auto_approved_bronze(self, app, sample_user):
        affiliate = affiliate_service.get_or_create_affiliate(sample_user.id)

        assert affiliate.is_approved
        assert affiliate.approved_by == 'auto'
        assert affiliate.tier == 'BRONZE'
        assert affiliate.total_referrals == 0

    def test_manual_approval_when_auto_approve_disabled(self, app, sample_user):
        app.config['AFFILIATE_AUTO_APPROVE'] = False
        affiliate = affiliate_service.get_or_create_affiliate(sample_user.id)

        assert not affiliate.is_approved
        assert affiliate_service.is_code_valid(affiliate.affiliate_code) is False

        affiliate_service.approve_affiliate(affiliate.id, 'admin@example.com')
        assert affiliate_service.is_code_valid(affiliate.affiliate_code) is True

    def test_lookup_by_code_is_case_insensitive(self, app, affiliate):
        assert affiliate_service.get_affiliate_by_code('  nailpro1 ').id == affiliate.id
        assert affiliate_service.get_affiliate_by_code('UNKNOWN') is None

    def test_get_affiliate_not_found(self, app):
        with pytest.raises(NotFoundError):
            affiliate_service.get_affiliate(404)


class TestReferrals:

    def test_create_referral_is_idempotent(self, app, affiliate, sample_user):
        first = affiliate_service.create_referral(affiliate.id, sample_user.id)
        second = affiliate_service.create_referral(affiliate.id, sample_user.id)

        assert first.id == second.id
        assert first.status == 'PENDING'
        db.session.refresh(affiliate)
        assert affiliate.total_referrals == 1

    def test_activate_referral_is_idempotent(self, app, affiliate, sample_user):
        referral = affiliate_service.create_referral(affiliate.id, sample_user.id)

        affiliate_service.activate_referral(referral.id, 11)
        again = affiliate_service.activate_referral(referral.id, 12)

        assert again.status == 'ACTIVE'
        assert again.first_order_id == 11
        assert again.activated_at is not None
        db.session.refresh(affiliate)
        assert affiliate.active_referrals == 1

    def test_activate_unknown_referral(self, app):
        with pytest.raises(NotFoundError):
            affiliate_service.activate_referral(999, 1)


class TestClaimReferral:

    def test_claim_awards_signup_points(self, app, affiliate, sample_user, points_configs):
        result = affiliate_service.claim_referral(sample_user.id, 'nailpro1')

        assert result['created'] is True
        assert result['points_awarded'] == 50

        txn = PointsTransaction.query.filter_by(user_id=affiliate.user_id).one()
        assert txn.type == 'AFFILIATE_REFERRAL'
        assert txn.reference_id == str(result['referral'].id)

        db.session.refresh(affiliate)
        assert affiliate.total_referrals == 1
        assert affiliate.total_points_earned == 50

    def test_first_referral_milestone_sent_once(self, app, affiliate, sample_user, other_user):
        affiliate_service.claim_referral(sample_user.id, 'NAILPRO1')
        affiliate_service.claim_referral(other_user.id, 'NAILPRO1')

        assert Notification.query.filter_by(
            user_id=affiliate.user_id, title='First Referral!'
        ).count() == 1

    def test_second_claim_returns_existing(self, app, affiliate, sample_user, points_configs):
        affiliate_service.claim_referral(sample_user.id, 'NAILPRO1')
        result = affiliate_service.claim_referral(sample_user.id, 'NAILPRO1')

        assert result['created'] is False
        assert result['points_awarded'] == 0
        assert AffiliateReferral.query.count() == 1

    def test_self_referral_rejected(self, app, affiliate):
        with pytest.raises(BusinessRuleError) as exc:
            affiliate_service.claim_referral(affiliate.user_id, 'NAILPRO1')
        assert exc.value.code == 'SELF_REFERRAL'

    def test_inactive_affiliate_code_rejected(self, app, affiliate, sample_user):
        affiliate_service.set_active(affiliate.id, False)

        with pytest.raises(BusinessRuleError) as exc:
            affiliate_service.claim_referral(sample_user.id, 'NAILPRO1')
        assert exc.value.code == 'INVALID_AFFILIATE_CODE'

    def test_blank_code_rejected(self, app, sample_user):
        with pytest.raises(ValidationError):
            affiliate_service.claim_referral(sample_user.id, '   ')


class TestDashboardFigures:

    def test_commission_rate_default_without_rules(self, app):
        assert estimate_commission_rate() == DEFAULT_COMMISSION_RATE

    def test_commission_rate_from_rules(self, app, points_configs):
        # (100 + 20) / 2 points per 100 spent, then +5% bonus
        assert estimate_commission_rate() == 60.0
        assert estimate_commission_rate(5) == 63.0

    def test_earnings_breakdown_by_month(self, app, sample_user):
        db.session.add_all([
            PointsTransaction(user_id=sample_user.id, amount=30, type='AFFILIATE_PURCHASE',
                              balance_before=0, balance_after=30,
                              created_at=datetime(2026, 1, 5)),
            PointsTransaction(user_id=sample_user.id, amount=20, type='AFFILIATE_REFERRAL',
                              balance_before=30, balance_after=50,
                              created_at=datetime(2026, 1, 20)),
            PointsTransaction(user_id=sample_user.id, amount=-10, type='REDEMPTION',
                              balance_before=50, balance_after=40,
                              created_at=datetime(2026, 2, 1)),
            PointsTransaction(user_id=sample_user.id, amount=15, type='AFFILIATE_PURCHASE',
                              balance_before=40, balance_after=55,
                              created_at=datetime(2026, 3, 2)),
        ])
        db.session.commit()

        assert affiliate_service.earnings_breakdown(sample_user.id) == [
            {'period': '2026-01', 'points': 50},
            {'period': '2026-03', 'points': 15},
        ]
        assert affiliate_service.earnings_breakdown(sample_user.id, 'year') == [
            {'period': '2026', 'points': 65},
        ]

    def test_earnings_breakdown_rejects_unknown_period(self, app, sample_user):
        with pytest.raises(ValidationError):
            affiliate_service.earnings_breakdown(sample_user.id, 'week')
