"""
Utility modules for the loyalty back-end.
"""
from .logging_config import setup_logging
from .errors import (
    ErrorCode,
    error_response,
    error_from_exception,
    bad_request,
    unauthorized,
    forbidden,
    not_found,
    internal_error
)
from .exceptions import (
    LoyaltyError,
    NotFoundError,
    UserNotFoundError,
    ValidationError,
    InsufficientPointsError,
    BusinessRuleError,
    StateConflictError,
    PaymentProviderError
)
from .parsing import parse_datetime, parse_decimal, parse_int
