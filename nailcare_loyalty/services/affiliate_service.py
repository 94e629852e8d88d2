"""
Affiliate Service - referral program enrollment and referral tracking.

Handles:
- Affiliate code generation and enrollment
- Code lookup and validation
- Creating and activating referrals
- Approval and activation switches for admins
- Earnings breakdown for the affiliate dashboard
"""
import random
import re
import string
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from flask import current_app

from ..extensions import db
from ..utils.cache import cache
from ..models.user import User
from ..models.affiliate import Affiliate, AffiliateReferral, ReferralStatus
from ..models.order import Order
from ..models.points import PointsTransaction, PointsActionType, PointsTransactionType
from ..utils.exceptions import (
    NotFoundError,
    UserNotFoundError,
    ValidationError,
    BusinessRuleError,
)

CODE_SUFFIX_CHARS = string.ascii_uppercase + string.digits
CODE_SUFFIX_LENGTH = 4
CODE_MAX_RETRIES = 10


# Referred spend used to price the commission estimate
REFERENCE_ORDER_VALUE = Decimal('100.00')
DEFAULT_COMMISSION_RATE = 15.0


def normalize_code(code: str) -> str:
    return (code or '').strip().upper()


@cache.memoize(timeout=300)
def estimate_commission_rate(commission_bonus: int = 0) -> float:
    """
    Approximate commission as points earned per 100 of referred spend.

    Averages the first-order and repeat-order rules priced at
    REFERENCE_ORDER_VALUE, then applies the tier's bonus percentage.
    Informational only; nothing is paid from this figure.
    """
    from .points_service import points_service

    rates = []
    for action in (PointsActionType.REFERRAL_FIRST_ORDER.value,
                   PointsActionType.REFERRAL_REPEAT_ORDER.value):
        if points_service.get_active_configuration(action):
            points = points_service.calculate_points(action, REFERENCE_ORDER_VALUE)
            rates.append(points * 100.0 / float(REFERENCE_ORDER_VALUE))

    base = sum(rates) / len(rates) if rates else DEFAULT_COMMISSION_RATE
    return round(base * (1 + (commission_bonus or 0) / 100.0), 1)


class AffiliateService:
    """Service for managing affiliates and their referrals."""

    # ==================== Enrollment ====================

    def generate_affiliate_code(self, user_id, email: str) -> str:
        """
        Build a unique code from the email local-part plus a random suffix.

        Falls back to AFF + the first 8 characters of the user id after
        CODE_MAX_RETRIES collisions.
        """
        local_part = (email or '').split('@')[0].upper()
        base = re.sub(r'[^A-Z0-9]', '', local_part)[:8]

        for _ in range(CODE_MAX_RETRIES + 1):
            suffix = ''.join(random.choices(CODE_SUFFIX_CHARS, k=CODE_SUFFIX_LENGTH))
            code = f'{base}{suffix}'
            if not Affiliate.query.filter_by(affiliate_code=code).first():
                return code

        current_app.logger.warning(f"Affiliate code collisions for user {user_id}, using fallback")
        return f'AFF{str(user_id)[:8].upper()}'

    def get_or_create_affiliate(self, user_id: int, email: str = None) -> Affiliate:
        """Return the user's affiliate record, creating it on first call."""
        affiliate = Affiliate.query.filter_by(user_id=user_id).first()
        if affiliate:
            return affiliate

        user = db.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)

        now = datetime.utcnow()
        auto_approve = current_app.config.get('AFFILIATE_AUTO_APPROVE', True)
        affiliate = Affiliate(
            user_id=user_id,
            affiliate_code=self.generate_affiliate_code(user_id, email or user.email),
            is_active=True,
            approved_at=now if auto_approve else None,
            approved_by='auto' if auto_approve else None,
        )
        db.session.add(affiliate)

        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            # A concurrent request may have enrolled the same user
            existing = Affiliate.query.filter_by(user_id=user_id).first()
            if existing:
                return existing
            raise

        current_app.logger.info(f"Affiliate enrolled: user {user_id} code {affiliate.affiliate_code}")
        return affiliate

    # ==================== Lookup ====================

    def get_affiliate(self, affiliate_id: int) -> Affiliate:
        affiliate = db.session.get(Affiliate, affiliate_id)
        if not affiliate:
            raise NotFoundError('Affiliate', affiliate_id)
        return affiliate

    def get_affiliate_by_code(self, code: str) -> Optional[Affiliate]:
        code = normalize_code(code)
        if not code:
            return None
        return Affiliate.query.filter_by(affiliate_code=code).first()

    def is_code_valid(self, code: str) -> bool:
        """A code is usable when it resolves to an active, approved affiliate."""
        affiliate = self.get_affiliate_by_code(code)
        return bool(affiliate and affiliate.is_active and affiliate.is_approved)

    def get_referral_by_user_id(self, user_id: int) -> Optional[AffiliateReferral]:
        return AffiliateReferral.query.filter_by(referred_user_id=user_id).first()

    def list_referrals(self, affiliate_id: int) -> List[Dict[str, Any]]:
        """Referrals newest first, with order totals for each referred user."""
        referrals = AffiliateReferral.query.filter_by(
            affiliate_id=affiliate_id
        ).order_by(AffiliateReferral.created_at.desc()).all()

        enriched = []
        for referral in referrals:
            orders = referral.orders.all()
            data = referral.to_dict()
            data['total_orders'] = len(orders)
            data['total_revenue'] = float(sum(order.total for order in orders)) if orders else 0.0
            enriched.append(data)
        return enriched

    # ==================== Referrals ====================

    def create_referral(self, affiliate_id: int, referred_user_id: int) -> AffiliateReferral:
        """
        Link a referred user to an affiliate.

        Idempotent: an existing referral for the user is returned unchanged
        and the affiliate's counters are not touched.
        """
        existing = self.get_referral_by_user_id(referred_user_id)
        if existing:
            return existing

        referral = AffiliateReferral(
            affiliate_id=affiliate_id,
            referred_user_id=referred_user_id,
            status=ReferralStatus.PENDING.value,
        )
        db.session.add(referral)
        Affiliate.query.filter_by(id=affiliate_id).update(
            {Affiliate.total_referrals: Affiliate.total_referrals + 1},
            synchronize_session=False
        )

        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            existing = self.get_referral_by_user_id(referred_user_id)
            if existing:
                return existing
            raise

        current_app.logger.info(
            f"Referral created: affiliate {affiliate_id} referred user {referred_user_id}"
        )
        return referral

    def activate_referral(self, referral_id: int, first_order_id: int) -> AffiliateReferral:
        """
        Mark a PENDING referral ACTIVE on the referred user's first order.

        No-op for referrals that are already ACTIVE.
        """
        referral = db.session.get(AffiliateReferral, referral_id)
        if not referral:
            raise NotFoundError('Referral', referral_id)

        if referral.status != ReferralStatus.PENDING.value:
            return referral

        # Conditional update so a concurrent activation cannot count twice
        updated = AffiliateReferral.query.filter_by(
            id=referral_id, status=ReferralStatus.PENDING.value
        ).update({
            AffiliateReferral.status: ReferralStatus.ACTIVE.value,
            AffiliateReferral.first_order_id: first_order_id,
            AffiliateReferral.activated_at: datetime.utcnow(),
        }, synchronize_session=False)

        if updated:
            Affiliate.query.filter_by(id=referral.affiliate_id).update(
                {Affiliate.active_referrals: Affiliate.active_referrals + 1},
                synchronize_session=False
            )

        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        db.session.refresh(referral)
        if updated:
            current_app.logger.info(
                f"Referral {referral_id} activated by order {first_order_id}"
            )
        return referral

    def claim_referral(self, user_id: int, code: str) -> Dict[str, Any]:
        """
        Attach the signed-in user to the affiliate owning `code`.

        On first creation the affiliate earns REFERRAL_SIGNUP points.
        """
        from .points_service import points_service
        from .milestone_service import milestone_service
        from .affiliate_tiers import affiliate_tier_service

        if not normalize_code(code):
            raise ValidationError('Affiliate code is required', 'code')

        affiliate = self.get_affiliate_by_code(code)
        if not affiliate or not affiliate.is_active or not affiliate.is_approved:
            raise BusinessRuleError('Invalid affiliate code', 'INVALID_AFFILIATE_CODE')

        if affiliate.user_id == user_id:
            raise BusinessRuleError('You cannot use your own affiliate code', 'SELF_REFERRAL')

        existing = self.get_referral_by_user_id(user_id)
        if existing:
            return {'referral': existing, 'created': False, 'points_awarded': 0}

        referral = self.create_referral(affiliate.id, user_id)

        points_awarded = 0
        points = points_service.calculate_points(PointsActionType.REFERRAL_SIGNUP.value)
        if points > 0:
            points_service.award_points(
                affiliate.user_id,
                points,
                PointsTransactionType.AFFILIATE_REFERRAL.value,
                str(referral.id),
                f'Referral signup: user {user_id}',
            )
            points_awarded = points

        affiliate_tier_service.auto_promote_affiliate(affiliate.id)
        milestone_service.check_referral_milestones(affiliate.id)

        return {'referral': referral, 'created': True, 'points_awarded': points_awarded}

    # ==================== Admin ====================

    def list_affiliates(
        self,
        status: str = None,
        search: str = None,
        page: int = 1,
        per_page: int = 20
    ) -> Dict[str, Any]:
        """
        Paginated affiliate list for the admin.

        Args:
            status: 'active', 'inactive' or None for all
            search: Case-insensitive match on code, email or name
        """
        query = Affiliate.query.join(User, Affiliate.user_id == User.id)
        if status == 'active':
            query = query.filter(Affiliate.is_active.is_(True))
        elif status == 'inactive':
            query = query.filter(Affiliate.is_active.is_(False))

        if search:
            pattern = f'%{search.strip()}%'
            query = query.filter(db.or_(
                Affiliate.affiliate_code.ilike(pattern),
                User.email.ilike(pattern),
                User.name.ilike(pattern),
            ))

        page = max(page, 1)
        per_page = max(min(per_page, 100), 1)
        total = query.count()
        affiliates = query.order_by(Affiliate.created_at.desc(), Affiliate.id.desc()).offset(
            (page - 1) * per_page
        ).limit(per_page).all()

        return {
            'affiliates': affiliates,
            'pagination': {
                'total': total,
                'page': page,
                'per_page': per_page,
                'total_pages': (total + per_page - 1) // per_page,
            },
        }

    def referral_order_count(self, affiliate_id: int) -> int:
        return Order.query.join(
            AffiliateReferral, Order.affiliate_referral_id == AffiliateReferral.id
        ).filter(AffiliateReferral.affiliate_id == affiliate_id).count()

    def approve_affiliate(self, affiliate_id: int, approved_by: str) -> Affiliate:
        affiliate = self.get_affiliate(affiliate_id)
        affiliate.approved_at = datetime.utcnow()
        affiliate.approved_by = approved_by
        db.session.commit()
        current_app.logger.info(f"Affiliate {affiliate_id} approved by {approved_by}")
        return affiliate

    def set_active(self, affiliate_id: int, is_active: bool) -> Affiliate:
        affiliate = self.get_affiliate(affiliate_id)
        affiliate.is_active = bool(is_active)
        db.session.commit()
        current_app.logger.info(f"Affiliate {affiliate_id} is_active={affiliate.is_active}")
        return affiliate

    # ==================== Dashboard ====================

    def earnings_breakdown(self, user_id: int, period: str = 'month') -> List[Dict[str, Any]]:
        """Positive ledger amounts summed per month (YYYY-MM) or year (YYYY)."""
        if period not in ('month', 'year'):
            raise ValidationError("period must be 'month' or 'year'", 'period')

        transactions = PointsTransaction.query.filter(
            PointsTransaction.user_id == user_id,
            PointsTransaction.amount > 0
        ).order_by(PointsTransaction.created_at.asc()).all()

        fmt = '%Y' if period == 'year' else '%Y-%m'
        breakdown = OrderedDict()
        for txn in transactions:
            key = txn.created_at.strftime(fmt)
            breakdown[key] = breakdown.get(key, 0) + txn.amount

        return [{'period': key, 'points': points} for key, points in sorted(breakdown.items())]


# Singleton instance
affiliate_service = AffiliateService()
