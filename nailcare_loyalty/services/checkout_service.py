"""
Checkout Service - payment intents and order completion.

Flow:
1. create_payment_intent() prices the customer's cart, applies an eligible
   coupon and opens a Stripe PaymentIntent for the discounted total.
2. Stripe calls the webhook with payment_intent.succeeded and
   handle_payment_succeeded() turns the cart into an Order, counts the
   coupon use, clears the cart and notifies admin and customer.
3. Loyalty points for the order (affiliate referral and own purchase) are
   awarded after the order is committed. They are best effort: a failure
   is logged and never undoes the order.
"""
from decimal import Decimal
from typing import Dict, Any, Optional
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.catalog import Cart
from ..models.order import Order, OrderItem, OrderStatus
from ..models.affiliate import Affiliate, AffiliateReferral, ReferralStatus
from ..models.points import PointsActionType, PointsTransactionType
from ..models.notification import NotificationType
from ..models.user import User
from ..utils.exceptions import BusinessRuleError, UserNotFoundError
from .coupon_service import coupon_service, to_money
from .stripe_service import stripe_service
from .points_service import points_service
from .affiliate_service import affiliate_service
from .affiliate_tiers import affiliate_tier_service
from .milestone_service import milestone_service
from .notification_service import notification_service


def _as_dict(obj) -> Dict[str, Any]:
    """Plain dict view of a Stripe object or mapping."""
    if hasattr(obj, 'to_dict'):
        return obj.to_dict()
    return dict(obj or {})


def _metadata_int(metadata: Dict[str, Any], key: str) -> Optional[int]:
    try:
        return int(metadata.get(key))
    except (TypeError, ValueError):
        return None


class CheckoutService:
    """Cart checkout and Stripe payment completion."""

    # ==================== Payment intent ====================

    def create_payment_intent(
        self,
        user_id: int,
        shipping_address: str = None,
        coupon_code: str = None
    ) -> Dict[str, Any]:
        """
        Open a PaymentIntent for the user's cart.

        An ineligible coupon does not block checkout: it is ignored and the
        reason is returned as coupon_error.

        Raises:
            UserNotFoundError: unknown user
            BusinessRuleError: cart is empty
            PaymentProviderError: Stripe call failed
        """
        user = db.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)

        cart = Cart.query.filter_by(user_id=user_id).first()
        if not cart or not cart.items:
            raise BusinessRuleError('Cart is empty', 'CART_EMPTY')

        subtotal = to_money(cart.subtotal)
        discount = Decimal('0.00')
        applied_code = None
        coupon_error = None

        if coupon_code and coupon_code.strip():
            evaluation = coupon_service.validate_coupon_code(
                coupon_code,
                subtotal,
                [item.to_line() for item in cart.items],
                user_id,
            )
            if evaluation.valid:
                discount = evaluation.discount_amount
                applied_code = evaluation.coupon.code
            else:
                coupon_error = evaluation.error
                current_app.logger.info(
                    f"Coupon {coupon_code} ignored at checkout for user {user_id}: {evaluation.error}"
                )

        total = max(Decimal('0.00'), subtotal - discount)

        intent = stripe_service.create_payment_intent(total, {
            'user_id': str(user_id),
            'cart_id': str(cart.id),
            'shipping_address': shipping_address or '',
            'coupon_code': applied_code or '',
            'discount_amount': str(discount),
        })

        current_app.logger.info(
            f"PaymentIntent {intent['payment_intent_id']} for user {user_id}: "
            f"subtotal {subtotal} discount {discount} total {total}"
        )

        return {
            'client_secret': intent['client_secret'],
            'payment_intent_id': intent['payment_intent_id'],
            'subtotal': str(subtotal),
            'discount_amount': str(discount),
            'total': str(total),
            'coupon_code': applied_code,
            'coupon_error': coupon_error,
        }

    # ==================== Webhook ====================

    def handle_payment_succeeded(self, payment_intent) -> Dict[str, Any]:
        """
        Turn a paid cart into an order.

        Idempotent on the PaymentIntent id: a redelivered event returns the
        existing order without side effects.
        """
        payment_intent = _as_dict(payment_intent)
        payment_intent_id = payment_intent['id']
        metadata = _as_dict(payment_intent.get('metadata'))

        existing = Order.query.filter_by(payment_intent_id=payment_intent_id).first()
        if existing:
            current_app.logger.info(f"PaymentIntent {payment_intent_id} already processed (order {existing.id})")
            return {'handled': True, 'duplicate': True, 'order_id': existing.id}

        user_id = _metadata_int(metadata, 'user_id')
        if user_id is None:
            current_app.logger.warning(f"PaymentIntent {payment_intent_id} has no user_id metadata")
            return {'handled': False, 'error': 'No user_id in metadata'}

        cart = Cart.query.filter_by(user_id=user_id).first()
        if not cart or not cart.items:
            current_app.logger.warning(f"PaymentIntent {payment_intent_id}: cart for user {user_id} is empty")
            return {'handled': False, 'error': 'Cart is empty'}

        user = db.session.get(User, user_id)
        coupon_code = (metadata.get('coupon_code') or '').strip().upper() or None
        subtotal = to_money(cart.subtotal)
        discount = to_money(metadata.get('discount_amount'))
        amount = payment_intent.get('amount_received') or payment_intent.get('amount') or 0
        total = (Decimal(amount) / 100).quantize(Decimal('0.01'))

        referral = affiliate_service.get_referral_by_user_id(user_id)

        try:
            order = Order(
                user_id=user_id,
                subtotal=subtotal,
                discount_amount=discount,
                total=total,
                coupon_code=coupon_code,
                payment_intent_id=payment_intent_id,
                status=OrderStatus.PROCESSING.value,
                shipping_address=metadata.get('shipping_address') or None,
                affiliate_referral_id=referral.id if referral else None,
            )
            for item in cart.items:
                order.items.append(OrderItem(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price=item.product.price,
                ))
            db.session.add(order)
            db.session.flush()

            if coupon_code:
                coupon_service.record_coupon_usage(coupon_code, user_id, commit=False)

            for item in list(cart.items):
                db.session.delete(item)

            customer = (user.name or user.email) if user else 'Customer'
            notification_service.notify_admins(
                'New Order',
                f'New order #{order.id} from {customer} - {total}€',
                {
                    'order_id': order.id,
                    'user_id': user_id,
                    'total': str(total),
                    'coupon_code': coupon_code,
                },
                commit=False,
            )
            notification_service.create(
                user_id,
                NotificationType.ORDER_STATUS.value,
                'Order Confirmed',
                f'Your order #{order.id} has been confirmed and is being processed. Total: {total}€',
                {
                    'order_id': order.id,
                    'order_status': OrderStatus.PROCESSING.value,
                    'total': str(total),
                },
                commit=False,
            )

            db.session.commit()

        except IntegrityError:
            # Concurrent delivery of the same event already created the order
            db.session.rollback()
            existing = Order.query.filter_by(payment_intent_id=payment_intent_id).first()
            if existing:
                return {'handled': True, 'duplicate': True, 'order_id': existing.id}
            raise
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(f"Order {order.id} created from PaymentIntent {payment_intent_id}")

        points = self.process_order_points(order.id, user_id, total, referral.id if referral else None)

        return {'handled': True, 'duplicate': False, 'order_id': order.id, 'points': points}

    # ==================== Loyalty points ====================

    def process_order_points(
        self,
        order_id: int,
        user_id: int,
        order_total: Decimal,
        referral_id: Optional[int] = None
    ) -> Dict[str, int]:
        """
        Award referral and purchase points for a completed order.

        Each step is isolated: a failure is logged and the remaining steps
        still run.
        """
        result = {'affiliate_points': 0, 'own_points': 0}

        if referral_id:
            try:
                result['affiliate_points'] = self._award_referral_points(order_id, order_total, referral_id)
            except Exception as e:
                db.session.rollback()
                current_app.logger.error(f"Failed to process referral points for order {order_id}: {e}")

        try:
            own_points = points_service.calculate_points(PointsActionType.OWN_PURCHASE.value, order_total)
            if own_points > 0:
                points_service.award_points(
                    user_id,
                    own_points,
                    PointsTransactionType.AFFILIATE_PURCHASE.value,
                    str(order_id),
                    f'Purchase points: {order_total}€',
                )
                result['own_points'] = own_points

                own_affiliate = Affiliate.query.filter_by(user_id=user_id).first()
                if own_affiliate:
                    affiliate_tier_service.auto_promote_affiliate(own_affiliate.id)
                milestone_service.check_points_milestone(user_id)
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to award purchase points for order {order_id}: {e}")

        return result

    def _award_referral_points(self, order_id: int, order_total: Decimal, referral_id: int) -> int:
        referral = db.session.get(AffiliateReferral, referral_id)
        if not referral:
            return 0

        if referral.status == ReferralStatus.PENDING.value:
            affiliate_service.activate_referral(referral.id, order_id)
            action = PointsActionType.REFERRAL_FIRST_ORDER.value
            description = f'Referral first order: {order_total}€'
        else:
            action = PointsActionType.REFERRAL_REPEAT_ORDER.value
            description = f'Referral repeat order: {order_total}€'

        points = points_service.calculate_points(action, order_total)
        affiliate = db.session.get(Affiliate, referral.affiliate_id)
        if points > 0 and affiliate:
            points_service.award_points(
                affiliate.user_id,
                points,
                PointsTransactionType.AFFILIATE_PURCHASE.value,
                str(order_id),
                description,
            )

        if affiliate:
            affiliate_tier_service.auto_promote_affiliate(affiliate.id)
            milestone_service.check_points_milestone(affiliate.user_id)

        return points if affiliate else 0


# Singleton instance
checkout_service = CheckoutService()
