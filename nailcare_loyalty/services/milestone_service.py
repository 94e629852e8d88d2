"""
Affiliate milestone notifications.

Milestones are sent once per user. Every check here is best effort: failures
are logged and never propagate to the operation that triggered them.
"""
from typing import Dict, Any
from flask import current_app

from ..extensions import db
from ..models.affiliate import Affiliate
from ..models.reward import PointsRedemption
from ..models.notification import NotificationType
from .notification_service import notification_service

REFERRAL_MILESTONES = {
    1: 'first_referral',
    10: 'referrals_10',
    100: 'referrals_100',
}

POINTS_MILESTONE = 1000

MILESTONE_MESSAGES = {
    'first_referral': {
        'title': 'First Referral!',
        'message': "Congratulations! You've got your first referral. "
                   "Keep sharing your link to earn more points!",
    },
    'referrals_10': {
        'title': '10 Referrals Milestone!',
        'message': "Amazing! You've reached 10 referrals. You're building a great network!",
    },
    'referrals_100': {
        'title': '100 Referrals Achievement!',
        'message': "Incredible! You've reached 100 referrals. You're a top affiliate!",
    },
    'points_1000': {
        'title': '1000 Points Milestone!',
        'message': "Congratulations! You've earned over {points} points. Keep up the great work!",
    },
    'first_redemption': {
        'title': 'First Reward Redeemed!',
        'message': "Great! You've redeemed your first reward. Enjoy your discount!",
    },
}


class MilestoneService:

    def check_referral_milestones(self, affiliate_id: int) -> None:
        """Referral-count milestones, plus the points milestone for the affiliate."""
        try:
            affiliate = db.session.get(Affiliate, affiliate_id)
            if not affiliate:
                return

            milestone = REFERRAL_MILESTONES.get(affiliate.total_referrals)
            if milestone:
                self._notify(affiliate.user_id, milestone, {'referrals': affiliate.total_referrals})

            self.check_points_milestone(affiliate.user_id)
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to check milestones for affiliate {affiliate_id}: {e}")

    def check_points_milestone(self, user_id: int) -> None:
        """Notify once when total points earned reaches POINTS_MILESTONE."""
        try:
            affiliate = Affiliate.query.filter_by(user_id=user_id).first()
            if not affiliate or (affiliate.total_points_earned or 0) < POINTS_MILESTONE:
                return
            self._notify(user_id, 'points_1000', {'points': affiliate.total_points_earned})
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to check points milestone for user {user_id}: {e}")

    def check_first_redemption(self, user_id: int) -> None:
        try:
            if PointsRedemption.query.filter_by(user_id=user_id).count() == 1:
                self._notify(user_id, 'first_redemption', {})
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to check redemption milestone for user {user_id}: {e}")

    def _notify(self, user_id: int, milestone: str, data: Dict[str, Any]) -> bool:
        template = MILESTONE_MESSAGES[milestone]
        if notification_service.has_notification(user_id, template['title']):
            return False

        notification_service.create(
            user_id,
            NotificationType.SYSTEM.value,
            template['title'],
            template['message'].format(**data),
            {'milestone_type': milestone, **data},
        )
        return True


# Singleton instance
milestone_service = MilestoneService()
