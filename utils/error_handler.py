"""Error handling system with standardized responses for the order API"""

import logging
import time
import asyncio
from typing import Dict, Any, Optional, Tuple
from dataclasses import dataclass
from enum import Enum
from datetime import datetime, timezone

from utils.exception_handler import (
    MarketplaceError,
    ValidationError,
    OrderPermissionError,
    NotFoundError,
    InvalidTransitionError,
    ConflictError,
    PersistenceError,
)

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    BUSINESS_LOGIC = "business_logic"
    CONCURRENCY = "concurrency"
    DATABASE = "database"
    SYSTEM = "system"


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class StandardError:
    """Normalized error as returned to HTTP clients and written to logs"""

    code: str
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    user_message: str
    http_status: int = 500
    details: Optional[Dict[str, Any]] = None
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_response(self) -> Dict[str, Any]:
        body = {
            "code": self.code,
            "message": self.user_message,
            "category": self.category.value,
        }
        if self.details:
            body["details"] = self.details
        return {"error": body}


class ErrorCodes:
    """Centralized error codes"""

    # Validation (1000-1999)
    INVALID_INPUT = "1001"

    # Authorization (3000-3999)
    FORBIDDEN = "3001"

    # Storage (7000-7999)
    DATABASE_ERROR = "7001"
    VERSION_CONFLICT = "7005"

    # System (8000-8999)
    INTERNAL_ERROR = "8001"

    # Order lifecycle (9000-9999)
    ORDER_NOT_FOUND = "9001"
    INVALID_ORDER_STATE = "9002"


# Order matters: first isinstance match wins
_CLASSIFICATION: Tuple[Tuple[type, str, ErrorCategory, ErrorSeverity], ...] = (
    (ValidationError, ErrorCodes.INVALID_INPUT, ErrorCategory.VALIDATION, ErrorSeverity.LOW),
    (OrderPermissionError, ErrorCodes.FORBIDDEN, ErrorCategory.AUTHORIZATION, ErrorSeverity.MEDIUM),
    (NotFoundError, ErrorCodes.ORDER_NOT_FOUND, ErrorCategory.NOT_FOUND, ErrorSeverity.LOW),
    (InvalidTransitionError, ErrorCodes.INVALID_ORDER_STATE, ErrorCategory.BUSINESS_LOGIC, ErrorSeverity.MEDIUM),
    (ConflictError, ErrorCodes.VERSION_CONFLICT, ErrorCategory.CONCURRENCY, ErrorSeverity.MEDIUM),
    (PersistenceError, ErrorCodes.DATABASE_ERROR, ErrorCategory.DATABASE, ErrorSeverity.CRITICAL),
)

_USER_MESSAGES = {
    ErrorCategory.CONCURRENCY: "The order was modified by someone else. Reload and try again.",
    ErrorCategory.DATABASE: "System temporarily unavailable. Please try again later.",
    ErrorCategory.SYSTEM: "An unexpected error occurred. Please try again.",
}


@dataclass
class RetryConfig:
    max_attempts: int = 3
    delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 60.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows ``attempt`` (0-based)"""
        return min(self.delay * (self.backoff_factor ** attempt), self.max_delay)


class RetryHandler:
    """Exponential backoff for transient storage and network failures"""

    TRANSIENT_NAMES = ("TimeoutError", "ConnectionError", "OperationalError", "TemporaryFailure")

    @staticmethod
    async def retry_async(func, config: RetryConfig, *args, **kwargs):
        for attempt in range(config.max_attempts):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not RetryHandler._should_retry(e, attempt, config):
                    raise
                await asyncio.sleep(config.delay_for(attempt))

    @staticmethod
    def retry_sync(func, config: RetryConfig, *args, **kwargs):
        for attempt in range(config.max_attempts):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not RetryHandler._should_retry(e, attempt, config):
                    raise
                time.sleep(config.delay_for(attempt))

    @staticmethod
    def _should_retry(exception: Exception, attempt: int, config: RetryConfig) -> bool:
        if not RetryHandler.is_retryable(exception):
            return False
        if attempt >= config.max_attempts - 1:
            logger.error(f"❌ RETRY: giving up after {config.max_attempts} attempts: {exception}")
            return False
        logger.warning(
            f"🔄 RETRY: attempt {attempt + 1} failed, retrying in {config.delay_for(attempt)}s: {exception}"
        )
        return True

    @staticmethod
    def is_retryable(exception: Exception) -> bool:
        if isinstance(exception, PersistenceError):
            return True
        if isinstance(exception, MarketplaceError):
            return False
        name = exception.__class__.__name__
        return any(transient in name for transient in RetryHandler.TRANSIENT_NAMES)


class ErrorHandler:
    """Maps exceptions onto standardized errors and keeps counts for monitoring"""

    def __init__(self):
        self.error_counts: Dict[str, int] = {}

    def handle_error(self, error: Exception, context: Optional[Dict] = None) -> StandardError:
        standard_error = self.classify(error)
        self._log_error(standard_error, error, context)

        error_key = f"{standard_error.category.value}:{standard_error.code}"
        self.error_counts[error_key] = self.error_counts.get(error_key, 0) + 1
        return standard_error

    def classify(self, error: Exception) -> StandardError:
        message = getattr(error, "message", None) or str(error)

        for error_type, code, category, severity in _CLASSIFICATION:
            if isinstance(error, error_type):
                return StandardError(
                    code=code,
                    message=message,
                    category=category,
                    severity=severity,
                    user_message=_USER_MESSAGES.get(category, message),
                    http_status=error.http_status,
                    details=self._details_for(error),
                )

        return StandardError(
            code=ErrorCodes.INTERNAL_ERROR,
            message=f"Unexpected error: {message}",
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.HIGH,
            user_message=_USER_MESSAGES[ErrorCategory.SYSTEM],
            http_status=500,
            details={"exception_type": error.__class__.__name__},
        )

    @staticmethod
    def _details_for(error: MarketplaceError) -> Optional[Dict[str, Any]]:
        # Storage failures never leak driver messages to clients
        if isinstance(error, PersistenceError):
            return None
        details = dict(error.details)
        if isinstance(error, ValidationError) and error.field:
            details["field"] = error.field
        return details or None

    def _log_error(self, standard_error: StandardError, original_error: Exception, context: Optional[Dict]):
        summary = (
            f"{standard_error.category.value.upper()} [{standard_error.code}] "
            f"{standard_error.message} context={context}"
        )

        if standard_error.severity == ErrorSeverity.CRITICAL:
            logger.critical(f"🚨 {summary}", exc_info=original_error)
        elif standard_error.severity == ErrorSeverity.HIGH:
            logger.error(f"❌ {summary}", exc_info=original_error)
        elif standard_error.severity == ErrorSeverity.MEDIUM:
            logger.warning(f"⚠️ {summary}")
        else:
            logger.info(f"ℹ️ {summary}")

    def get_error_stats(self) -> Dict[str, Any]:
        return {
            "total_errors": sum(self.error_counts.values()),
            "error_counts": self.error_counts.copy(),
        }


error_handler = ErrorHandler()


def handle_error(error: Exception, context: Optional[Dict] = None) -> StandardError:
    """Convenience function to handle errors"""
    return error_handler.handle_error(error, context)
