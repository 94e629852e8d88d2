"""
Middleware package for the loyalty back-end.
"""
from .auth import require_auth, require_admin, create_session_token, get_current_user
