"""
Points Service for the nail-care loyalty program.

Owns every change to a user's points balance:
- Pricing actions from the active PointsConfiguration (flat or tiered)
- Awarding, deducting and manually adjusting points
- Balance reads, ledger history and reconciliation

ARCHITECTURE:
- PointsTransaction is the append-only ledger
- User.points_balance is the only stored balance; every ledger insert
  updates it in the same database transaction
- The user row is locked (SELECT ... FOR UPDATE) before the balance is read,
  so concurrent awards and deductions serialize on it
- Affiliate.total_points_earned is incremented SQL-side
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from flask import current_app

from ..extensions import db
from ..models.user import User
from ..models.affiliate import Affiliate
from ..models.points import (
    PointsTransaction,
    PointsConfiguration,
    PointsTransactionType,
    PointsActionType,
)
from ..utils.parsing import parse_datetime, parse_decimal, parse_int
from ..utils.exceptions import (
    NotFoundError,
    ValidationError,
    UserNotFoundError,
    InsufficientPointsError,
)


class PointsService:
    """
    Central service for all points-related operations.

    Usage:
        from nailcare_loyalty.services.points_service import points_service

        points = points_service.calculate_points('OWN_PURCHASE', Decimal('150.00'))
        txn = points_service.award_points(user_id, points, 'AFFILIATE_PURCHASE', str(order.id))
    """

    # ==================== Pricing ====================

    def get_active_configuration(self, action_type: str) -> Optional[PointsConfiguration]:
        """Most recently created active configuration whose window covers now."""
        now = datetime.utcnow()
        return PointsConfiguration.query.filter(
            PointsConfiguration.action_type == action_type,
            PointsConfiguration.is_active.is_(True),
            PointsConfiguration.valid_from <= now,
            db.or_(
                PointsConfiguration.valid_until.is_(None),
                PointsConfiguration.valid_until >= now
            )
        ).order_by(
            PointsConfiguration.created_at.desc(),
            PointsConfiguration.id.desc()
        ).first()

    def calculate_points(self, action_type: str, order_value=None) -> int:
        """
        Points earned for an action.

        Returns 0 when no configuration applies, when the order is below the
        configured minimum, or when a tiered configuration has no band for
        the order value. Bands are inclusive on both ends and scanned in
        order; the first match wins.
        """
        config = self.get_active_configuration(action_type)
        if not config:
            current_app.logger.warning(f"No active points configuration for {action_type}")
            return 0

        value = Decimal(str(order_value)) if order_value is not None else None

        if config.min_order_value is not None and value is not None:
            if value < Decimal(str(config.min_order_value)):
                return 0

        if config.tiered_config:
            if value is None:
                return 0
            for band in config.tiers:
                band_min = Decimal(str(band.get('min_order_value') or 0))
                band_max = band.get('max_order_value')
                if value >= band_min and (band_max is None or value <= Decimal(str(band_max))):
                    return self._cap(int(band.get('points') or 0), config)
            return 0

        return self._cap(config.points_amount or 0, config)

    @staticmethod
    def _cap(points: int, config: PointsConfiguration) -> int:
        if config.max_points_per_transaction:
            return min(points, config.max_points_per_transaction)
        return points

    # ==================== Balance mutations ====================

    @staticmethod
    def _check_transaction_type(transaction_type: str) -> None:
        if transaction_type not in PointsTransactionType.__members__:
            raise ValidationError(f'Unknown transaction type: {transaction_type}', 'transaction_type')

    def lock_user(self, user_id: int) -> User:
        """Load the user row FOR UPDATE, refreshing any cached instance."""
        user = db.session.query(User).filter(
            User.id == user_id
        ).populate_existing().with_for_update().first()
        if not user:
            raise UserNotFoundError(user_id)
        return user

    def record_transaction(
        self,
        user: User,
        amount: int,
        transaction_type: str,
        reference_id: str = None,
        description: str = None
    ) -> PointsTransaction:
        """
        Append a ledger row and move the balance, without committing.

        The caller owns the transaction and must hold the lock from lock_user().
        """
        balance_before = user.points_balance or 0
        balance_after = balance_before + amount

        transaction = PointsTransaction(
            user_id=user.id,
            amount=amount,
            type=transaction_type,
            reference_id=reference_id,
            description=description,
            balance_before=balance_before,
            balance_after=balance_after,
            created_at=datetime.utcnow()
        )
        db.session.add(transaction)
        user.points_balance = balance_after

        if amount > 0 and transaction_type != PointsTransactionType.REDEMPTION.value:
            Affiliate.query.filter_by(user_id=user.id).update(
                {Affiliate.total_points_earned: Affiliate.total_points_earned + amount},
                synchronize_session=False
            )

        return transaction

    def award_points(
        self,
        user_id: int,
        amount: int,
        transaction_type: str,
        reference_id: str = None,
        description: str = None
    ) -> PointsTransaction:
        """
        Credit points to a user.

        Raises:
            ValidationError: amount is not positive, or unknown transaction type
            UserNotFoundError: no such user
        """
        if amount is None or amount <= 0:
            raise ValidationError('Points amount must be positive', 'amount')
        self._check_transaction_type(transaction_type)

        try:
            user = self.lock_user(user_id)
            transaction = self.record_transaction(
                user, amount, transaction_type, reference_id,
                description or f'Earned {amount} points'
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"Points awarded: user {user_id} +{amount} pts ({transaction_type}), "
            f"balance {transaction.balance_after}"
        )
        return transaction

    def deduct_points(
        self,
        user_id: int,
        amount: int,
        transaction_type: str,
        reference_id: str = None,
        description: str = None
    ) -> PointsTransaction:
        """
        Debit points from a user. Nothing changes when the balance is short.

        Raises:
            ValidationError: amount is not positive, or unknown transaction type
            UserNotFoundError: no such user
            InsufficientPointsError: balance < amount
        """
        if amount is None or amount <= 0:
            raise ValidationError('Points amount must be positive', 'amount')
        self._check_transaction_type(transaction_type)

        try:
            user = self.lock_user(user_id)
            current = user.points_balance or 0
            if current < amount:
                raise InsufficientPointsError(current, amount)

            transaction = self.record_transaction(
                user, -amount, transaction_type, reference_id,
                description or f'Deducted {amount} points'
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"Points deducted: user {user_id} -{amount} pts ({transaction_type}), "
            f"balance {transaction.balance_after}"
        )
        return transaction

    def adjust_points(
        self,
        user_id: int,
        amount: int,
        description: str,
        admin_id
    ) -> PointsTransaction:
        """
        Admin correction, positive or negative.

        Raises:
            ValidationError: amount is zero, or the balance would go negative
            UserNotFoundError: no such user
        """
        if not amount:
            raise ValidationError('Adjustment amount cannot be zero', 'amount')

        try:
            user = self.lock_user(user_id)
            current = user.points_balance or 0
            if current + amount < 0:
                raise ValidationError(
                    f'Adjustment would make balance negative (current: {current})',
                    'amount'
                )

            transaction = self.record_transaction(
                user, amount, PointsTransactionType.MANUAL_ADJUSTMENT.value,
                str(admin_id) if admin_id is not None else None,
                description or 'Manual adjustment'
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"Points adjusted by admin {admin_id}: user {user_id} {amount:+d} pts, "
            f"balance {transaction.balance_after}"
        )
        return transaction

    # ==================== Reads ====================

    def get_points_balance(self, user_id: int) -> int:
        user = db.session.get(User, user_id)
        return (user.points_balance or 0) if user else 0

    def get_history(
        self,
        user_id: int,
        limit: int = 50,
        transaction_type: str = None
    ) -> List[PointsTransaction]:
        """Newest-first page of the user's ledger."""
        query = PointsTransaction.query.filter_by(user_id=user_id)
        if transaction_type:
            query = query.filter_by(type=transaction_type)
        return query.order_by(
            PointsTransaction.created_at.desc(),
            PointsTransaction.id.desc()
        ).limit(limit).all()

    def reconcile_balance(self, user_id: int, fix: bool = False) -> Dict[str, Any]:
        """
        Compare the stored balance against the ledger.

        The expected balance is the signed sum of the ledger; the last row's
        balance_after must agree with it.
        """
        user = db.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)

        ledger_sum = db.session.query(
            db.func.coalesce(db.func.sum(PointsTransaction.amount), 0)
        ).filter(PointsTransaction.user_id == user_id).scalar()

        latest = PointsTransaction.query.filter_by(user_id=user_id).order_by(
            PointsTransaction.created_at.desc(),
            PointsTransaction.id.desc()
        ).first()
        latest_after = latest.balance_after if latest else 0

        stored = user.points_balance or 0
        result = {
            'user_id': user_id,
            'stored_balance': stored,
            'ledger_sum': int(ledger_sum),
            'latest_balance_after': latest_after,
            'consistent': stored == int(ledger_sum) == latest_after,
            'fixed': False,
        }

        if not result['consistent'] and fix:
            user.points_balance = int(ledger_sum)
            db.session.commit()
            result['fixed'] = True
            current_app.logger.warning(
                f"Reconciled points balance for user {user_id}: {stored} -> {int(ledger_sum)}"
            )

        return result

    # ==================== Configuration management ====================

    def list_configurations(self, is_active: Optional[bool] = None) -> List[PointsConfiguration]:
        query = PointsConfiguration.query
        if is_active is not None:
            query = query.filter_by(is_active=is_active)
        return query.order_by(
            PointsConfiguration.action_type.asc(),
            PointsConfiguration.created_at.desc()
        ).all()

    def get_configuration(self, config_id) -> PointsConfiguration:
        config = db.session.get(PointsConfiguration, config_id)
        if not config:
            raise NotFoundError('Points configuration', config_id)
        return config

    def _validate_tiered_config(self, tiered_config) -> Dict[str, Any]:
        if not isinstance(tiered_config, dict) or not isinstance(tiered_config.get('tiers'), list):
            raise ValidationError('Tiered config must have a tiers array', 'tiered_config')

        for band in tiered_config['tiers']:
            if not isinstance(band, dict):
                raise ValidationError('Each tier must be an object', 'tiered_config')
            band_min = band.get('min_order_value')
            band_max = band.get('max_order_value')
            points = band.get('points')
            if not _is_number(band_min) or band_min < 0:
                raise ValidationError('Invalid tier min_order_value', 'tiered_config')
            if band_max is not None and (not _is_number(band_max) or band_max < band_min):
                raise ValidationError('Invalid tier max_order_value', 'tiered_config')
            if not _is_number(points) or points < 0:
                raise ValidationError('Invalid tier points', 'tiered_config')

        return tiered_config

    def _apply_configuration(self, config: PointsConfiguration, data: Dict[str, Any]) -> None:
        if 'action_type' in data:
            action_type = (data['action_type'] or '').upper()
            if action_type not in PointsActionType.__members__:
                raise ValidationError(f'Unknown action type: {data["action_type"]}', 'action_type')
            config.action_type = action_type
        if 'points_amount' in data:
            config.points_amount = parse_int(data['points_amount'], 'points_amount')
        if 'tiered_config' in data:
            tiered = data['tiered_config']
            config.tiered_config = self._validate_tiered_config(tiered) if tiered else None
        if 'min_order_value' in data:
            config.min_order_value = parse_decimal(data['min_order_value'], 'min_order_value')
        if 'max_points_per_transaction' in data:
            config.max_points_per_transaction = parse_int(
                data['max_points_per_transaction'], 'max_points_per_transaction'
            )
        if 'is_active' in data:
            config.is_active = bool(data['is_active'])
        if 'valid_from' in data:
            config.valid_from = parse_datetime(data['valid_from'], 'valid_from') or datetime.utcnow()
        if 'valid_until' in data:
            config.valid_until = parse_datetime(data['valid_until'], 'valid_until')

        if not config.points_amount and not config.tiered_config:
            raise ValidationError('Either points_amount or tiered_config must be provided')
        if config.valid_until and config.valid_from and config.valid_until < config.valid_from:
            raise ValidationError('valid_until must be after valid_from', 'valid_until')

    def create_configuration(self, data: Dict[str, Any]) -> PointsConfiguration:
        if not data.get('action_type'):
            raise ValidationError('Action type is required', 'action_type')

        config = PointsConfiguration(is_active=True, valid_from=datetime.utcnow())
        try:
            self._apply_configuration(config, data)
            db.session.add(config)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(f"Points configuration created: {config.id} {config.action_type}")
        return config

    def update_configuration(self, config_id, data: Dict[str, Any]) -> PointsConfiguration:
        config = self.get_configuration(config_id)
        try:
            self._apply_configuration(config, data)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(f"Points configuration updated: {config.id}")
        return config

    def delete_configuration(self, config_id) -> None:
        config = self.get_configuration(config_id)
        db.session.delete(config)
        db.session.commit()
        current_app.logger.info(f"Points configuration deleted: {config_id}")


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# Singleton instance
points_service = PointsService()
