"""
Tests for checkout and the Stripe webhook with mocked Stripe payloads.

Tests cover:
- create-intent (cart pricing, coupon application, provider failures)
- Stripe-Signature validation (security)
- payment_intent.succeeded (order creation, coupon usage, notifications, points)
- Duplicate deliveries and unrelated event types
- Referral activation on the referred user's first order

Events are signed with the test webhook secret the way Stripe signs them,
so signature checks run through the real stripe library.
"""
import json
import hmac
import hashlib
import time
import stripe
from decimal import Decimal
from unittest.mock import patch

from nailcare_loyalty.extensions import db
from nailcare_loyalty.models import (
    AffiliateReferral,
    Cart,
    CartItem,
    CouponUserUsage,
    Notification,
    Order,
    PointsTransaction,
)
from nailcare_loyalty.services.checkout_service import checkout_service
from nailcare_loyalty.services.notification_service import notification_service
from nailcare_loyalty.services.points_service import points_service

WEBHOOK_SECRET = 'whsec_test'


def generate_stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Stripe-Signature header value for a payload."""
    timestamp = timestamp or int(time.time())
    signed = f'{timestamp}.'.encode('utf-8') + payload
    signature = hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()
    return f't={timestamp},v1={signature}'


def payment_succeeded_event(user_id, amount_cents, coupon_code='', discount='0.00',
                            intent_id='pi_3Nx1TestIntent0001'):
    return {
        'id': 'evt_3Nx1TestEvent0001',
        'object': 'event',
        'api_version': '2024-06-20',
        'created': int(time.time()),
        'type': 'payment_intent.succeeded',
        'livemode': False,
        'pending_webhooks': 1,
        'data': {
            'object': {
                'id': intent_id,
                'object': 'payment_intent',
                'amount': amount_cents,
                'amount_received': amount_cents,
                'currency': 'eur',
                'status': 'succeeded',
                'client_secret': f'{intent_id}_secret_test',
                'metadata': {
                    'user_id': str(user_id),
                    'cart_id': '1',
                    'shipping_address': 'Calle Mayor 1, Madrid',
                    'coupon_code': coupon_code,
                    'discount_amount': discount,
                },
            },
        },
    }


def post_event(client, event, secret=WEBHOOK_SECRET):
    payload = json.dumps(event).encode('utf-8')
    return client.post(
        '/api/payments/webhook',
        data=payload,
        content_type='application/json',
        headers={'Stripe-Signature': generate_stripe_signature(payload, secret)},
    )


def refill_cart(user, catalog, quantity=1):
    cart = Cart.query.filter_by(user_id=user.id).first()
    cart.items.append(CartItem(product_id=catalog['gel'].id, quantity=quantity))
    db.session.commit()


FAKE_INTENT = {
    'id': 'pi_3Nx1TestIntent0001',
    'object': 'payment_intent',
    'client_secret': 'pi_3Nx1TestIntent0001_secret_test',
}


# ============================================================================
# CREATE INTENT
# ============================================================================

class TestCreateIntent:

    def test_empty_cart(self, client, auth_headers):
        response = client.post('/api/payments/create-intent', json={}, headers=auth_headers)

        assert response.status_code == 400
        assert response.get_json() == {'error': 'Cart is empty', 'code': 'CART_EMPTY'}

    def test_charges_cart_subtotal(self, client, auth_headers, cart):
        with patch('stripe.PaymentIntent.create', return_value=FAKE_INTENT) as create:
            response = client.post('/api/payments/create-intent', json={
                'shipping_address': 'Calle Mayor 1, Madrid',
            }, headers=auth_headers)

        data = response.get_json()
        assert response.status_code == 200
        assert data['client_secret'] == FAKE_INTENT['client_secret']
        assert data['payment_intent_id'] == FAKE_INTENT['id']
        assert data['subtotal'] == '90.00'
        assert data['discount_amount'] == '0.00'
        assert data['total'] == '90.00'
        assert data['coupon_code'] is None

        kwargs = create.call_args.kwargs
        assert kwargs['amount'] == 9000
        assert kwargs['currency'] == 'eur'
        assert kwargs['metadata']['shipping_address'] == 'Calle Mayor 1, Madrid'

    def test_applies_coupon(self, client, auth_headers, cart, percent_coupon):
        with patch('stripe.PaymentIntent.create', return_value=FAKE_INTENT) as create:
            response = client.post('/api/payments/create-intent', json={'coupon_code': 'spring20'},
                                   headers=auth_headers)

        data = response.get_json()
        assert data['discount_amount'] == '15.00'
        assert data['total'] == '75.00'
        assert data['coupon_code'] == 'SPRING20'
        assert data['coupon_error'] is None

        metadata = create.call_args.kwargs['metadata']
        assert create.call_args.kwargs['amount'] == 7500
        assert metadata['coupon_code'] == 'SPRING20'
        assert metadata['discount_amount'] == '15.00'

    def test_invalid_coupon_does_not_block_checkout(self, client, auth_headers, cart):
        with patch('stripe.PaymentIntent.create', return_value=FAKE_INTENT) as create:
            response = client.post('/api/payments/create-intent', json={'coupon_code': 'NOPE'},
                                   headers=auth_headers)

        data = response.get_json()
        assert response.status_code == 200
        assert data['total'] == '90.00'
        assert data['coupon_code'] is None
        assert data['coupon_error'] == 'Invalid coupon code'
        assert create.call_args.kwargs['metadata']['coupon_code'] == ''

    def test_provider_failure(self, client, auth_headers, cart):
        with patch('stripe.PaymentIntent.create', side_effect=stripe.APIConnectionError('timeout')):
            response = client.post('/api/payments/create-intent', json={}, headers=auth_headers)

        assert response.status_code == 502
        assert response.get_json()['code'] == 'PAYMENT_PROVIDER_ERROR'


# ============================================================================
# SIGNATURE VALIDATION
# ============================================================================

class TestStripeSignatureValidation:

    def test_webhook_without_signature(self, client):
        response = client.post('/api/payments/webhook', data=b'{}', content_type='application/json')

        assert response.status_code == 400
        assert response.get_json() == {'error': 'No signature', 'code': 'INVALID_SIGNATURE'}

    def test_webhook_with_wrong_secret(self, client, sample_user):
        response = post_event(client, payment_succeeded_event(sample_user.id, 9000), secret='whsec_other')

        assert response.status_code == 400
        assert response.get_json()['code'] == 'INVALID_SIGNATURE'
        assert Order.query.count() == 0

    def test_webhook_with_malformed_payload(self, client):
        with patch('nailcare_loyalty.webhooks.stripe.StripeService.construct_webhook_event',
                   side_effect=ValueError('Invalid payload')):
            response = client.post('/api/payments/webhook', data=b'not json',
                                   headers={'Stripe-Signature': 't=1,v1=abc'})

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Webhook Error: Invalid payload'

    def test_webhook_without_secret_configured(self, app, client):
        app.config['STRIPE_WEBHOOK_SECRET'] = ''

        response = client.post('/api/payments/webhook', data=b'{}', headers={'Stripe-Signature': 't=1,v1=abc'})
        assert response.status_code == 500

    def test_signature_is_deterministic(self):
        payload = b'{"id": "evt_1"}'
        assert generate_stripe_signature(payload, timestamp=1700000000) == \
            generate_stripe_signature(payload, timestamp=1700000000)
        assert generate_stripe_signature(payload, timestamp=1700000000) != \
            generate_stripe_signature(b'{"id": "evt_2"}', timestamp=1700000000)


# ============================================================================
# PAYMENT SUCCEEDED
# ============================================================================

class TestPaymentSucceededWebhook:

    def test_unrelated_event_is_acknowledged(self, client):
        event = {'id': 'evt_1', 'object': 'event', 'type': 'charge.refunded', 'data': {'object': {}}}

        response = post_event(client, event)

        assert response.status_code == 200
        assert response.get_json() == {'received': True, 'handled': False}

    def test_creates_order(self, client, sample_user, cart, catalog, points_configs):
        response = post_event(client, payment_succeeded_event(sample_user.id, 9000))

        data = response.get_json()
        assert response.status_code == 200
        assert data['handled'] is True
        assert data['duplicate'] is False
        assert data['points'] == {'affiliate_points': 0, 'own_points': 10}

        order = db.session.get(Order, data['order_id'])
        assert order.user_id == sample_user.id
        assert order.subtotal == Decimal('90.00')
        assert order.total == Decimal('90.00')
        assert order.status == 'PROCESSING'
        assert order.shipping_address == 'Calle Mayor 1, Madrid'
        assert order.payment_intent_id == 'pi_3Nx1TestIntent0001'
        assert sorted((item.product_id, item.quantity, item.price) for item in order.items) == sorted([
            (catalog['gel'].id, 2, Decimal('25.00')),
            (catalog['file'].id, 1, Decimal('40.00')),
        ])

        db.session.refresh(cart)
        assert cart.items == []

    def test_notifies_admins_and_customer(self, client, sample_user, cart):
        data = post_event(client, payment_succeeded_event(sample_user.id, 9000)).get_json()

        admin_note = Notification.query.filter_by(user_id=None).one()
        assert admin_note.title == 'New Order'
        assert admin_note.extra_data['order_id'] == data['order_id']

        customer_notes = notification_service.list_for_user(sample_user.id, unread_only=True)
        assert [n.title for n in customer_notes] == ['Order Confirmed']
        assert customer_notes[0].message.endswith('Total: 90.00€')

    def test_awards_own_purchase_points(self, client, sample_user, cart, points_configs):
        post_event(client, payment_succeeded_event(sample_user.id, 12000))

        txn = PointsTransaction.query.filter_by(user_id=sample_user.id).one()
        assert txn.amount == 25
        assert txn.type == 'AFFILIATE_PURCHASE'
        assert points_service.get_points_balance(sample_user.id) == 25

    def test_records_coupon_usage(self, client, sample_user, cart, percent_coupon):
        event = payment_succeeded_event(sample_user.id, 7500, coupon_code='SPRING20', discount='15.00')

        data = post_event(client, event).get_json()

        order = db.session.get(Order, data['order_id'])
        assert order.coupon_code == 'SPRING20'
        assert order.discount_amount == Decimal('15.00')
        assert order.total == Decimal('75.00')

        db.session.refresh(percent_coupon)
        assert percent_coupon.used_count == 1
        usage = CouponUserUsage.query.filter_by(coupon_id=percent_coupon.id, user_id=sample_user.id).one()
        assert usage.times_used == 1

    def test_duplicate_delivery_is_idempotent(self, client, sample_user, cart, catalog, points_configs):
        event = payment_succeeded_event(sample_user.id, 9000)
        first = post_event(client, event).get_json()

        refill_cart(sample_user, catalog)
        second = post_event(client, event).get_json()

        assert second == {'received': True, 'handled': True, 'duplicate': True, 'order_id': first['order_id']}
        assert Order.query.count() == 1
        assert PointsTransaction.query.filter_by(user_id=sample_user.id).count() == 1
        assert len(Cart.query.filter_by(user_id=sample_user.id).first().items) == 1

    def test_missing_user_metadata(self, client, sample_user, cart):
        event = payment_succeeded_event(sample_user.id, 9000)
        event['data']['object']['metadata'] = {}

        data = post_event(client, event).get_json()

        assert data['handled'] is False
        assert data['error'] == 'No user_id in metadata'
        assert Order.query.count() == 0

    def test_empty_cart_not_handled(self, client, sample_user):
        data = post_event(client, payment_succeeded_event(sample_user.id, 9000)).get_json()

        assert data == {'received': True, 'handled': False, 'error': 'Cart is empty'}

    def test_accepts_stripe_payment_intent_object(self, app, sample_user, cart, percent_coupon):
        intent_data = payment_succeeded_event(
            sample_user.id, 7500, coupon_code='spring20', discount='15.00', intent_id='pi_3Nx1TestIntent0002'
        )['data']['object']
        intent = stripe.PaymentIntent.construct_from(intent_data, 'sk_test_key')

        result = checkout_service.handle_payment_succeeded(intent)

        assert result['handled'] is True
        order = db.session.get(Order, result['order_id'])
        assert order.payment_intent_id == 'pi_3Nx1TestIntent0002'
        assert order.coupon_code == 'SPRING20'
        assert order.total == Decimal('75.00')
        assert order.shipping_address == 'Calle Mayor 1, Madrid'

    def test_points_failure_keeps_order(self, client, sample_user, cart, points_configs):
        with patch('nailcare_loyalty.services.checkout_service.points_service.award_points',
                   side_effect=RuntimeError('ledger down')):
            data = post_event(client, payment_succeeded_event(sample_user.id, 9000)).get_json()

        assert data['handled'] is True
        assert data['points']['own_points'] == 0
        assert db.session.get(Order, data['order_id']) is not None


# ============================================================================
# REFERRAL ORDERS
# ============================================================================

class TestReferralOrders:

    def test_first_then_repeat_order(self, client, sample_user, affiliate, affiliate_user,
                                     cart, catalog, points_configs):
        referral = AffiliateReferral(affiliate_id=affiliate.id, referred_user_id=sample_user.id)
        db.session.add(referral)
        db.session.commit()

        first = post_event(client, payment_succeeded_event(sample_user.id, 9000)).get_json()

        assert first['points']['affiliate_points'] == 100
        db.session.refresh(referral)
        assert referral.status == 'ACTIVE'
        assert referral.first_order_id == first['order_id']
        assert db.session.get(Order, first['order_id']).affiliate_referral_id == referral.id
        db.session.refresh(affiliate)
        assert affiliate.active_referrals == 1

        refill_cart(sample_user, catalog)
        second = post_event(
            client, payment_succeeded_event(sample_user.id, 2500, intent_id='pi_3Nx1TestIntent0002')
        ).get_json()

        assert second['points']['affiliate_points'] == 20
        db.session.refresh(referral)
        assert referral.first_order_id == first['order_id']
        db.session.refresh(affiliate)
        assert affiliate.active_referrals == 1

        earned = [t.amount for t in PointsTransaction.query.filter_by(
            user_id=affiliate_user.id).order_by(PointsTransaction.id)]
        assert earned == [100, 20]
        assert points_service.get_points_balance(affiliate_user.id) == 120

    def test_customer_without_referral(self, client, sample_user, affiliate, affiliate_user,
                                       cart, points_configs):
        data = post_event(client, payment_succeeded_event(sample_user.id, 9000)).get_json()

        assert data['points']['affiliate_points'] == 0
        assert db.session.get(Order, data['order_id']).affiliate_referral_id is None
        assert PointsTransaction.query.filter_by(user_id=affiliate_user.id).count() == 0
