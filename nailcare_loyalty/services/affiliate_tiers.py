"""
Affiliate tier classification and promotion.

Tiers are earned when an affiliate meets all three minimums of a tier at
once: total referrals, total points earned and active referrals. Thresholds
live in AffiliateTierThreshold and fall back to DEFAULT_TIER_THRESHOLDS.

Promotion is monotonic: auto_promote_affiliate() only ever moves an
affiliate up. Admins can set any tier explicitly.
"""
from datetime import datetime
from typing import Dict, Any, Optional
from flask import current_app

from ..extensions import db
from ..models.affiliate import (
    Affiliate,
    AffiliateTier,
    AffiliateTierThreshold,
    DEFAULT_TIER_THRESHOLDS,
    TIER_ORDER,
)
from ..models.notification import NotificationType
from ..utils.exceptions import ValidationError
from .notification_service import notification_service

THRESHOLD_FIELDS = ('min_total_referrals', 'min_total_points_earned', 'min_active_referrals')


def _stat(stats: Dict[str, Any], name: str) -> int:
    return int(stats.get(name) or 0)


def calculate_tier(stats: Dict[str, Any], thresholds: Dict[str, Dict[str, Any]] = None) -> str:
    """
    Highest tier whose three minimums all hold.

    Args:
        stats: total_referrals, total_points_earned, active_referrals
        thresholds: per-tier minimums, defaults to DEFAULT_TIER_THRESHOLDS

    Returns:
        Tier name; BRONZE when no higher tier qualifies
    """
    thresholds = thresholds or DEFAULT_TIER_THRESHOLDS

    for tier in reversed(TIER_ORDER[1:]):
        limits = thresholds.get(tier) or DEFAULT_TIER_THRESHOLDS[tier]
        if (
            _stat(stats, 'total_referrals') >= limits['min_total_referrals']
            and _stat(stats, 'total_points_earned') >= limits['min_total_points_earned']
            and _stat(stats, 'active_referrals') >= limits['min_active_referrals']
        ):
            return tier

    return AffiliateTier.BRONZE.value


def tier_rank(tier: str) -> int:
    return TIER_ORDER.index(tier) if tier in TIER_ORDER else 0


class AffiliateTierService:
    """Threshold management and tier promotion."""

    def load_thresholds(self) -> Dict[str, Dict[str, Any]]:
        """Thresholds and benefits per tier, stored rows over defaults."""
        thresholds = {tier: dict(values) for tier, values in DEFAULT_TIER_THRESHOLDS.items()}
        for row in AffiliateTierThreshold.query.all():
            if row.tier in thresholds:
                thresholds[row.tier].update({
                    'min_total_referrals': row.min_total_referrals,
                    'min_total_points_earned': row.min_total_points_earned,
                    'min_active_referrals': row.min_active_referrals,
                    'commission_bonus': row.commission_bonus,
                    'description': row.description or thresholds[row.tier]['description'],
                })
        return thresholds

    def get_tier_benefits(self, tier: str) -> Dict[str, Any]:
        thresholds = self.load_thresholds()
        values = thresholds.get(tier) or thresholds[AffiliateTier.BRONZE.value]
        return {
            'commission_bonus': values['commission_bonus'],
            'description': values['description'],
        }

    def update_threshold(self, tier: str, data: Dict[str, Any]) -> AffiliateTierThreshold:
        """Create or update the stored row for a tier."""
        tier = (tier or '').upper()
        if tier not in TIER_ORDER:
            raise ValidationError(f'Unknown tier: {tier}', 'tier')

        values = {}
        for field in THRESHOLD_FIELDS + ('commission_bonus',):
            if field in data:
                try:
                    value = int(data[field])
                except (TypeError, ValueError):
                    raise ValidationError(f'{field} must be an integer', field)
                if value < 0:
                    raise ValidationError(f'{field} cannot be negative', field)
                values[field] = value
        if 'description' in data:
            values['description'] = data['description']

        row = AffiliateTierThreshold.query.filter_by(tier=tier).first()
        if not row:
            row = AffiliateTierThreshold(tier=tier, **DEFAULT_TIER_THRESHOLDS[tier])
            db.session.add(row)

        for field, value in values.items():
            setattr(row, field, value)

        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        current_app.logger.info(f"Affiliate tier thresholds updated for {tier}")
        return row

    def auto_promote_affiliate(self, affiliate_id: int) -> Optional[str]:
        """
        Move an affiliate up to the tier its stats qualify for.

        Returns the new tier when a promotion happened. Never raises;
        failures are logged.
        """
        try:
            affiliate = db.session.get(Affiliate, affiliate_id)
            if not affiliate:
                return None

            # Counters are incremented SQL-side elsewhere
            db.session.refresh(affiliate)

            calculated = calculate_tier({
                'total_referrals': affiliate.total_referrals,
                'total_points_earned': affiliate.total_points_earned,
                'active_referrals': affiliate.active_referrals,
            }, self.load_thresholds())

            if tier_rank(calculated) <= tier_rank(affiliate.tier):
                return None

            previous = affiliate.tier
            affiliate.tier = calculated
            affiliate.tier_updated_at = datetime.utcnow()

            notification_service.create(
                affiliate.user_id,
                NotificationType.SYSTEM.value,
                f'Tier Upgrade to {calculated}!',
                f"Congratulations! You've been promoted to {calculated} tier. Keep up the great work!",
                {'tier': calculated, 'previous_tier': previous},
                commit=False,
            )
            db.session.commit()

            current_app.logger.info(f"Affiliate {affiliate_id} promoted {previous} -> {calculated}")
            return calculated

        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to auto-promote affiliate {affiliate_id}: {e}")
            return None

    def set_tier(self, affiliate_id: int, tier: str) -> Affiliate:
        """Admin override, up or down."""
        tier = (tier or '').upper()
        if tier not in TIER_ORDER:
            raise ValidationError(f'Unknown tier: {tier}', 'tier')

        from .affiliate_service import affiliate_service
        affiliate = affiliate_service.get_affiliate(affiliate_id)
        if affiliate.tier != tier:
            affiliate.tier = tier
            affiliate.tier_updated_at = datetime.utcnow()
            db.session.commit()
            current_app.logger.info(f"Affiliate {affiliate_id} tier set to {tier} by admin")
        return affiliate

    def promote_all(self) -> Dict[str, int]:
        """Run auto-promotion over every affiliate."""
        affiliate_ids = [row.id for row in db.session.query(Affiliate.id).all()]
        promoted = 0
        for affiliate_id in affiliate_ids:
            if self.auto_promote_affiliate(affiliate_id):
                promoted += 1

        current_app.logger.info(f"Tier promotion run: {promoted}/{len(affiliate_ids)} promoted")
        return {'total': len(affiliate_ids), 'promoted': promoted}

    def tier_distribution(self) -> Dict[str, int]:
        distribution = {tier: 0 for tier in TIER_ORDER}
        rows = db.session.query(Affiliate.tier, db.func.count(Affiliate.id)).group_by(Affiliate.tier).all()
        for tier, count in rows:
            distribution[tier] = count
        return distribution


# Singleton instance
affiliate_tier_service = AffiliateTierService()
