"""
Coupon Service - eligibility checks and discount calculation.

One evaluator serves both the validate endpoint and checkout. Checks run
in a fixed order and the first failure is reported:

    1. code exists                      (404)
    2. coupon active
    3. validity window
    4. global usage limit
    5. per-user usage limit
    6. included products                (cart items only)
    7. excluded products                (cart items only)
    8. included / excluded categories   (cart items only)
    9. minimum purchase
   10. discount amount

Money is handled as Decimal and rounded half-up to cents.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, List, Dict, Any
from flask import current_app

from ..extensions import db
from ..models.catalog import Product
from ..models.coupon import Coupon, CouponUserUsage, DiscountType
from ..models.reward import PointsRedemption, RedemptionStatus

CENTS = Decimal('0.01')


def to_money(value) -> Decimal:
    """Parse a money value; unparsable input counts as zero."""
    if value is None or value == '':
        return Decimal('0.00')
    try:
        return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return Decimal('0.00')


def normalize_coupon_code(code: str) -> str:
    return (code or '').strip().upper()


def _id_list(values) -> List[int]:
    result = []
    for value in values or []:
        try:
            result.append(int(value))
        except (TypeError, ValueError):
            continue
    return result


@dataclass
class CouponEvaluation:
    """Outcome of evaluating a coupon against a cart."""
    valid: bool
    discount_amount: Decimal = Decimal('0.00')
    error: Optional[str] = None
    status_code: int = 200
    coupon: Optional[Coupon] = None

    @classmethod
    def reject(cls, error: str, status_code: int = 400, coupon: Coupon = None) -> 'CouponEvaluation':
        return cls(valid=False, error=error, status_code=status_code, coupon=coupon)


class CouponService:
    """Coupon lookup, evaluation and usage recording."""

    def get_by_code(self, code: str) -> Optional[Coupon]:
        code = normalize_coupon_code(code)
        if not code:
            return None
        return Coupon.query.filter_by(code=code).first()

    def user_usage_count(self, coupon_id: int, user_id: int) -> int:
        usage = CouponUserUsage.query.filter_by(coupon_id=coupon_id, user_id=user_id).first()
        return usage.times_used if usage else 0

    def calculate_discount(self, coupon: Coupon, subtotal: Decimal) -> Decimal:
        subtotal = to_money(subtotal)
        value = Decimal(str(coupon.discount_value))

        if coupon.discount_type == DiscountType.PERCENTAGE.value:
            discount = subtotal * value / Decimal('100')
            if coupon.max_discount_amount:
                discount = min(discount, Decimal(str(coupon.max_discount_amount)))
        else:
            discount = min(value, subtotal)

        return max(discount, Decimal('0')).quantize(CENTS, rounding=ROUND_HALF_UP)

    def evaluate_coupon(
        self,
        coupon: Optional[Coupon],
        subtotal,
        cart_items: List[Dict[str, Any]] = None,
        user_id: int = None,
        delivery_cost=None,
        now: datetime = None
    ) -> CouponEvaluation:
        """
        Run every eligibility check against a coupon and compute the discount.

        Args:
            coupon: Coupon row, or None when the code did not resolve
            subtotal: Cart subtotal
            cart_items: [{'product_id': ..., 'quantity': ...}]; product and
                category checks are skipped when empty
            user_id: Customer, for the per-user limit
            delivery_cost: Added to the subtotal for coupons whose minimum
                includes delivery; defaults to DELIVERY_COST
        """
        if coupon is None:
            return CouponEvaluation.reject('Invalid coupon code', 404)

        now = now or datetime.utcnow()

        if not coupon.is_active:
            return CouponEvaluation.reject('This coupon is not active', coupon=coupon)

        if coupon.valid_from and now < coupon.valid_from:
            return CouponEvaluation.reject('This coupon is not yet valid', coupon=coupon)
        if coupon.valid_until and now > coupon.valid_until:
            return CouponEvaluation.reject('This coupon has expired', coupon=coupon)

        if coupon.usage_limit and (coupon.used_count or 0) >= coupon.usage_limit:
            return CouponEvaluation.reject('This coupon has reached its usage limit', coupon=coupon)

        if coupon.user_usage_limit and user_id is not None:
            if self.user_usage_count(coupon.id, user_id) >= coupon.user_usage_limit:
                return CouponEvaluation.reject(
                    f'You have reached the maximum usage limit ({coupon.user_usage_limit}) for this coupon',
                    coupon=coupon
                )

        if cart_items:
            error = self._check_cart_restrictions(coupon, cart_items)
            if error:
                return CouponEvaluation.reject(error, coupon=coupon)

        subtotal = to_money(subtotal)
        if coupon.min_purchase_amount is not None:
            minimum = Decimal(str(coupon.min_purchase_amount))
            if delivery_cost is None:
                delivery_cost = current_app.config.get('DELIVERY_COST', Decimal('10.00'))
            delivery = to_money(delivery_cost)
            amount_for_check = subtotal + delivery if coupon.min_purchase_includes_delivery else subtotal

            if amount_for_check < minimum:
                required = minimum - delivery if coupon.min_purchase_includes_delivery else minimum
                suffix = ' (excluding delivery)' if coupon.min_purchase_includes_delivery else ''
                return CouponEvaluation.reject(
                    f'Minimum purchase amount of {to_money(required)}€ is required for this coupon{suffix}',
                    coupon=coupon
                )

        return CouponEvaluation(
            valid=True,
            discount_amount=self.calculate_discount(coupon, subtotal),
            coupon=coupon,
        )

    def _check_cart_restrictions(self, coupon: Coupon, cart_items: List[Dict[str, Any]]) -> Optional[str]:
        product_ids = _id_list(item.get('product_id') for item in cart_items)

        included_products = set(_id_list(coupon.included_products))
        if included_products and not all(pid in included_products for pid in product_ids):
            return 'This coupon can only be applied to specific products. Please remove other items from your cart.'

        excluded_products = set(_id_list(coupon.excluded_products))
        if excluded_products and any(pid in excluded_products for pid in product_ids):
            return 'This coupon cannot be used with certain products in your cart'

        included_categories = set(_id_list(coupon.included_categories))
        excluded_categories = set(_id_list(coupon.excluded_categories))
        if not included_categories and not excluded_categories:
            return None

        categories = {
            product.id: product.category_id
            for product in Product.query.filter(Product.id.in_(product_ids)).all()
        }

        if included_categories:
            # Unknown or uncategorized products never satisfy an include list
            if not all(categories.get(pid) in included_categories for pid in product_ids):
                return 'This coupon can only be applied to products in specific categories'

        if excluded_categories:
            if any(categories.get(pid) in excluded_categories for pid in product_ids):
                return 'This coupon cannot be used with products from certain categories in your cart'

        return None

    def validate_coupon_code(
        self,
        code: str,
        subtotal,
        cart_items: List[Dict[str, Any]] = None,
        user_id: int = None,
        delivery_cost=None
    ) -> CouponEvaluation:
        """Resolve a code and evaluate it."""
        return self.evaluate_coupon(
            self.get_by_code(code), subtotal, cart_items, user_id, delivery_cost
        )

    def record_coupon_usage(self, code: str, user_id: int, commit: bool = True) -> Optional[Coupon]:
        """
        Count one use of a coupon by a user.

        Bumps the global counter and the per-user counter and marks a
        redemption coupon's PointsRedemption as USED.
        """
        coupon = self.get_by_code(code)
        if not coupon:
            current_app.logger.warning(f"Coupon usage recorded for unknown code {code}")
            return None

        now = datetime.utcnow()
        Coupon.query.filter_by(id=coupon.id).update(
            {Coupon.used_count: Coupon.used_count + 1},
            synchronize_session=False
        )

        usage = CouponUserUsage.query.filter_by(coupon_id=coupon.id, user_id=user_id).first()
        if usage:
            CouponUserUsage.query.filter_by(id=usage.id).update(
                {CouponUserUsage.times_used: CouponUserUsage.times_used + 1,
                 CouponUserUsage.last_used_at: now},
                synchronize_session=False
            )
        else:
            db.session.add(CouponUserUsage(
                coupon_id=coupon.id, user_id=user_id, times_used=1, last_used_at=now
            ))

        PointsRedemption.query.filter(
            PointsRedemption.coupon_id == coupon.id,
            PointsRedemption.status != RedemptionStatus.USED.value
        ).update({
            PointsRedemption.status: RedemptionStatus.USED.value,
            PointsRedemption.used_at: now,
        }, synchronize_session=False)

        if commit:
            db.session.commit()

        current_app.logger.info(f"Coupon {coupon.code} used by user {user_id}")
        return coupon


# Singleton instance
coupon_service = CouponService()
