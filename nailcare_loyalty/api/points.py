"""
Points API endpoints for customers.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..middleware.auth import require_auth
from ..models.points import PointsTransactionType
from ..services.points_service import points_service
from ..utils.errors import bad_request, internal_error, ErrorCode

points_bp = Blueprint('points', __name__)

MAX_HISTORY_LIMIT = 200


@points_bp.route('/balance', methods=['GET'])
@require_auth
def get_balance():
    """Current points balance of the caller."""
    return jsonify({
        'user_id': g.user_id,
        'points_balance': points_service.get_points_balance(g.user_id)
    })


@points_bp.route('/history', methods=['GET'])
@require_auth
def get_history():
    """
    The caller's points ledger, newest first.

    Query params:
        limit: Page size (default 50, max 200)
        type: Filter by transaction type
    """
    try:
        limit = min(int(request.args.get('limit', 50)), MAX_HISTORY_LIMIT)
    except ValueError:
        return bad_request('limit must be an integer', ErrorCode.INVALID_FIELD)
    if limit < 1:
        return bad_request('limit must be positive', ErrorCode.INVALID_FIELD)

    transaction_type = request.args.get('type')
    if transaction_type and transaction_type.upper() not in PointsTransactionType.__members__:
        return bad_request(f'Unknown transaction type: {transaction_type}', ErrorCode.INVALID_FIELD)

    try:
        transactions = points_service.get_history(
            g.user_id, limit, transaction_type.upper() if transaction_type else None
        )
        return jsonify({
            'transactions': [t.to_dict() for t in transactions],
            'count': len(transactions),
            'points_balance': points_service.get_points_balance(g.user_id)
        })
    except Exception as e:
        current_app.logger.exception(f'Failed to fetch points history for user {g.user_id}')
        return internal_error('Failed to fetch points history', str(e))
