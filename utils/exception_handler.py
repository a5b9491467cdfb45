"""
Exception Handler Module
Provides the order core's exception taxonomy
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    """Base class for every failure surfaced by the order core"""

    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(MarketplaceError):
    """Custom validation error for input validation failures"""

    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.field = field
        super().__init__(message, details)


class OrderPermissionError(MarketplaceError):
    """Actor is not allowed to read or mutate the order"""

    http_status = 403


class NotFoundError(MarketplaceError):
    http_status = 404


class InvalidTransitionError(MarketplaceError):
    """Requested status is not reachable from the current one"""

    http_status = 409

    def __init__(self, message: str, from_status: Optional[str] = None, to_status: Optional[str] = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message, {"from_status": from_status, "to_status": to_status})


class ConflictError(MarketplaceError):
    """Raised when optimistic locking fails due to version conflict"""

    http_status = 409


class PersistenceError(MarketplaceError):
    """Storage layer failure - safe to retry"""

    http_status = 503

