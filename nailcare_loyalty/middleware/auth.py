"""
Session Token Authentication Middleware.

Verifies storefront session tokens (JWT) to authenticate API requests.
Tokens are issued by the storefront login flow and signed with SECRET_KEY.
They arrive either in the Authorization header or in the session cookie.

Token claims:
- sub: User id
- role: CUSTOMER or ADMIN (informational, the database role is authoritative)
- exp: Expiration time
"""
import logging
from datetime import datetime, timedelta
from functools import wraps
import jwt
from flask import request, g, current_app

from ..extensions import db
from ..models.user import User
from ..utils.errors import unauthorized, forbidden, ErrorCode

logger = logging.getLogger(__name__)


def create_session_token(user_id: int, role: str = 'CUSTOMER', expires_in: int = 3600) -> str:
    """Sign a session token for a user."""
    now = datetime.utcnow()
    payload = {
        'sub': str(user_id),
        'role': role,
        'iat': now,
        'exp': now + timedelta(seconds=expires_in),
    }
    return jwt.encode(
        payload,
        current_app.config['SECRET_KEY'],
        algorithm=current_app.config.get('SESSION_TOKEN_ALGORITHM', 'HS256'),
    )


def decode_session_token(token: str) -> dict | None:
    """
    Decode and verify a session token.

    Returns:
        Decoded token payload or None if invalid
    """
    if not token:
        return None

    try:
        return jwt.decode(
            token,
            current_app.config['SECRET_KEY'],
            algorithms=[current_app.config.get('SESSION_TOKEN_ALGORITHM', 'HS256')],
            options={'verify_exp': True, 'require': ['sub', 'exp']},
        )
    except jwt.ExpiredSignatureError:
        logger.info('[Auth] Session token expired')
        return None
    except jwt.InvalidTokenError as e:
        logger.info(f'[Auth] Invalid token: {e}')
        return None


def get_token_from_request() -> str | None:
    """
    Session token from the request.
    Priority:
    1. Authorization: Bearer header
    2. Session cookie
    """
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header.split(' ', 1)[1].strip()

    cookie_name = current_app.config.get('SESSION_TOKEN_COOKIE', 'session_token')
    return request.cookies.get(cookie_name)


def get_current_user() -> User | None:
    payload = decode_session_token(get_token_from_request())
    if not payload:
        return None

    try:
        user_id = int(payload.get('sub'))
    except (TypeError, ValueError):
        return None

    return db.session.get(User, user_id)


def require_auth(f):
    """
    Decorator to require a signed-in user.

    Sets g.user and g.user_id.

    Usage:
        @require_auth
        def my_endpoint():
            user_id = g.user_id
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = get_current_user()
        if not user:
            return unauthorized('Unauthorized', ErrorCode.AUTH_REQUIRED)

        g.user = user
        g.user_id = user.id
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Decorator to require an ADMIN user. Implies require_auth.

    Returns 401 without a session and 403 for non-admin users.
    """
    @wraps(f)
    @require_auth
    def decorated_function(*args, **kwargs):
        if not g.user.is_admin:
            return forbidden('Admin access required')
        return f(*args, **kwargs)

    return decorated_function
