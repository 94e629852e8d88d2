"""
Reward Service - spending points on rewards.

Redeeming a reward deducts its points cost, mints a single-purpose coupon
and records a PointsRedemption, all in one database transaction. Any
failure rolls the whole redemption back.

Also serves the rewards catalog, the customer's coupon list and admin
reward management.
"""
import random
import string
import time
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from flask import current_app

from ..extensions import db
from ..models.affiliate import Affiliate
from ..models.coupon import Coupon, CouponSource, DiscountType
from ..models.points import PointsTransactionType
from ..models.reward import Reward, PointsRedemption, RedemptionStatus
from ..utils.parsing import parse_datetime, parse_decimal, parse_int
from ..utils.exceptions import (
    NotFoundError,
    ValidationError,
    BusinessRuleError,
    InsufficientPointsError,
    StateConflictError,
)
from .points_service import points_service
from .milestone_service import milestone_service

COUPON_SUFFIX_CHARS = string.ascii_uppercase + string.digits

# Fields that define what a reward is worth; frozen once redeemed
PRICING_FIELDS = ('points_cost', 'discount_type', 'discount_value',
                  'min_purchase_amount', 'max_discount_amount')

REWARD_FIELDS = ('name', 'description', 'points_cost', 'discount_type', 'discount_value',
                 'min_purchase_amount', 'max_discount_amount', 'stock', 'is_active',
                 'valid_from', 'valid_until')


def generate_redemption_code() -> str:
    """REW + millisecond timestamp + 6 random characters."""
    suffix = ''.join(random.choices(COUPON_SUFFIX_CHARS, k=6))
    return f'REW{int(time.time() * 1000)}{suffix}'


def redemption_status(coupon: Optional[Coupon], now: datetime = None) -> str:
    """Status of a redemption derived from its coupon."""
    now = now or datetime.utcnow()
    if coupon is None:
        return RedemptionStatus.EXPIRED.value
    if (coupon.used_count or 0) > 0:
        return RedemptionStatus.USED.value
    if not coupon.is_active or (coupon.valid_until and now > coupon.valid_until):
        return RedemptionStatus.EXPIRED.value
    if coupon.valid_from and now < coupon.valid_from:
        return RedemptionStatus.PENDING.value
    return RedemptionStatus.ACTIVE.value


class RewardService:
    """Rewards catalog, redemption and admin management."""

    # ==================== Customer ====================

    def get_reward(self, reward_id) -> Reward:
        reward = db.session.get(Reward, reward_id)
        if not reward:
            raise NotFoundError('Reward', reward_id)
        return reward

    def list_available_rewards(self) -> List[Reward]:
        """Active, in-window, in-stock rewards, cheapest first."""
        now = datetime.utcnow()
        rewards = Reward.query.filter(
            Reward.is_active.is_(True),
            Reward.valid_from <= now,
            db.or_(Reward.valid_until.is_(None), Reward.valid_until >= now)
        ).order_by(Reward.points_cost.asc()).all()
        return [reward for reward in rewards if reward.is_in_stock]

    def redeem_reward(self, user_id: int, reward_id) -> Dict[str, Any]:
        """
        Spend points on a reward and mint its coupon.

        Raises:
            NotFoundError: reward does not exist
            BusinessRuleError: reward inactive, outside its window or out of stock
            InsufficientPointsError: balance below the points cost
        """
        reward = self.get_reward(reward_id)
        now = datetime.utcnow()

        if not reward.is_active:
            raise BusinessRuleError('Reward is not available', 'REWARD_UNAVAILABLE')
        if not reward.is_in_window(now):
            raise BusinessRuleError('Reward is not currently valid', 'REWARD_NOT_VALID')
        if not reward.is_in_stock:
            raise BusinessRuleError('Reward is out of stock', 'REWARD_OUT_OF_STOCK')

        balance = points_service.get_points_balance(user_id)
        if balance < reward.points_cost:
            raise InsufficientPointsError(balance, reward.points_cost)

        coupon_code = generate_redemption_code()

        try:
            user = points_service.lock_user(user_id)
            current = user.points_balance or 0
            if current < reward.points_cost:
                raise InsufficientPointsError(current, reward.points_cost)

            # Claims one unit of stock; zero rows means another redemption took the last one
            claimed = Reward.query.filter(
                Reward.id == reward.id,
                db.or_(Reward.stock.is_(None), Reward.redeemed_count < Reward.stock)
            ).update(
                {Reward.redeemed_count: Reward.redeemed_count + 1},
                synchronize_session=False
            )
            if not claimed:
                raise BusinessRuleError('Reward is out of stock', 'REWARD_OUT_OF_STOCK')

            points_service.record_transaction(
                user,
                -reward.points_cost,
                PointsTransactionType.REDEMPTION.value,
                str(reward.id),
                f'Redeemed reward: {reward.name}',
            )

            coupon = Coupon(
                code=coupon_code,
                description=f'Reward redemption: {reward.name}',
                discount_type=reward.discount_type,
                discount_value=reward.discount_value,
                min_purchase_amount=reward.min_purchase_amount,
                max_discount_amount=reward.max_discount_amount,
                source=CouponSource.REDEMPTION.value,
                is_active=True,
                valid_from=reward.valid_from,
                valid_until=reward.valid_until,
                used_count=0,
            )
            db.session.add(coupon)
            db.session.flush()

            redemption = PointsRedemption(
                user_id=user_id,
                reward_id=reward.id,
                coupon_id=coupon.id,
                coupon_code=coupon_code,
                points_spent=reward.points_cost,
                status=redemption_status(coupon, now),
            )
            db.session.add(redemption)
            db.session.commit()

        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"Reward redeemed: user {user_id} reward {reward.id} "
            f"-{reward.points_cost} pts coupon {coupon_code}"
        )

        if Affiliate.query.filter_by(user_id=user_id).first():
            milestone_service.check_first_redemption(user_id)

        return {
            'coupon_code': coupon_code,
            'coupon': coupon,
            'redemption': redemption,
        }

    def list_user_coupons(self, user_id: int, status: str = None) -> List[Dict[str, Any]]:
        """Redemptions newest first, with status recomputed from each coupon."""
        now = datetime.utcnow()
        if status:
            status = status.upper()
            if status not in RedemptionStatus.__members__:
                raise ValidationError(f'Unknown status: {status}', 'status')

        redemptions = PointsRedemption.query.filter_by(user_id=user_id).order_by(
            PointsRedemption.created_at.desc(),
            PointsRedemption.id.desc()
        ).all()

        results = []
        for redemption in redemptions:
            current = redemption_status(redemption.coupon, now)
            if status and current != status:
                continue
            results.append(redemption.to_dict(status=current))
        return results

    # ==================== Admin ====================

    def list_rewards(self, include_inactive: bool = True) -> List[Reward]:
        query = Reward.query
        if not include_inactive:
            query = query.filter_by(is_active=True)
        return query.order_by(Reward.created_at.desc()).all()

    def _apply_fields(self, reward: Reward, data: Dict[str, Any]) -> None:
        for field in REWARD_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field in ('name', 'description'):
                if field == 'name' and not (value or '').strip():
                    raise ValidationError('name is required', 'name')
                setattr(reward, field, value.strip() if isinstance(value, str) else value)
            elif field == 'discount_type':
                value = (value or '').upper()
                if value not in DiscountType.__members__:
                    raise ValidationError('discount_type must be PERCENTAGE or FIXED', 'discount_type')
                reward.discount_type = value
            elif field == 'points_cost':
                cost = parse_int(value, field, allow_none=False)
                if cost == 0:
                    raise ValidationError('points_cost must be positive', field)
                reward.points_cost = cost
            elif field == 'discount_value':
                reward.discount_value = parse_decimal(value, field, allow_none=False)
            elif field in ('min_purchase_amount', 'max_discount_amount'):
                setattr(reward, field, parse_decimal(value, field))
            elif field == 'stock':
                reward.stock = parse_int(value, field)
            elif field == 'is_active':
                reward.is_active = bool(value)
            elif field == 'valid_from':
                reward.valid_from = parse_datetime(value, field) or datetime.utcnow()
            elif field == 'valid_until':
                reward.valid_until = parse_datetime(value, field)

        if (reward.discount_type == DiscountType.PERCENTAGE.value
                and reward.discount_value is not None
                and Decimal(str(reward.discount_value)) > 100):
            raise ValidationError('Percentage discount cannot exceed 100', 'discount_value')

        if reward.valid_until and reward.valid_from and reward.valid_until < reward.valid_from:
            raise ValidationError('valid_until must be after valid_from', 'valid_until')

    def create_reward(self, data: Dict[str, Any]) -> Reward:
        for field in ('name', 'points_cost', 'discount_type', 'discount_value'):
            if data.get(field) in (None, ''):
                raise ValidationError(f'{field} is required', field)

        reward = Reward(redeemed_count=0, is_active=True, valid_from=datetime.utcnow())
        try:
            self._apply_fields(reward, data)
            db.session.add(reward)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(f"Reward created: {reward.id} {reward.name}")
        return reward

    def update_reward(self, reward_id, data: Dict[str, Any]) -> Reward:
        reward = self.get_reward(reward_id)

        if (reward.redeemed_count or 0) > 0:
            changed = [field for field in PRICING_FIELDS if field in data]
            if changed:
                raise StateConflictError(
                    f"Cannot change {', '.join(changed)} of a reward that has been redeemed"
                )

        try:
            self._apply_fields(reward, data)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(f"Reward updated: {reward.id}")
        return reward

    def delete_reward(self, reward_id) -> None:
        reward = self.get_reward(reward_id)
        if (reward.redeemed_count or 0) > 0:
            raise BusinessRuleError(
                'Cannot delete a reward that has been redeemed; deactivate it instead',
                'REWARD_REDEEMED'
            )

        db.session.delete(reward)
        db.session.commit()
        current_app.logger.info(f"Reward deleted: {reward_id}")


# Singleton instance
reward_service = RewardService()
