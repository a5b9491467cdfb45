"""Configuration management for the Mystery Mart order core"""

import os
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes", "on")


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./mysterymart.db")
    DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
    DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))  # seconds waiting for a pooled connection
    DB_CONNECT_TIMEOUT = int(os.getenv("DB_CONNECT_TIMEOUT", "10"))
    DB_ECHO = _env_bool("DB_ECHO", "false")

    # Platform switches
    ALLOW_PURCHASES = _env_bool("ALLOW_PURCHASES", "true")

    # Order lifecycle rules
    # Strict mode enforces the adjacency graph; relaxed mode lets sellers pick any
    # non-terminal status from the fulfillment dropdown
    STRICT_STATUS_TRANSITIONS = _env_bool("STRICT_STATUS_TRANSITIONS", "true")
    REQUIRE_TRACKING_FOR_SHIPPED = _env_bool("REQUIRE_TRACKING_FOR_SHIPPED", "true")
    ORDER_CURRENCY = os.getenv("ORDER_CURRENCY", "USD")
    COD_ESTIMATED_DELIVERY = os.getenv("COD_ESTIMATED_DELIVERY", "3-7 business days")
    MAX_ORDER_QUANTITY = int(os.getenv("MAX_ORDER_QUANTITY", "100"))

    # Outbox relay
    DISPATCH_ORDER_MESSAGES_INLINE = _env_bool("DISPATCH_ORDER_MESSAGES_INLINE", "true")
    OUTBOX_BATCH_SIZE = int(os.getenv("OUTBOX_BATCH_SIZE", "50"))
    OUTBOX_MAX_RETRIES = int(os.getenv("OUTBOX_MAX_RETRIES", "5"))
    OUTBOX_RELAY_INTERVAL_SECONDS = int(os.getenv("OUTBOX_RELAY_INTERVAL_SECONDS", "30"))
    RUN_OUTBOX_SCHEDULER = _env_bool("RUN_OUTBOX_SCHEDULER", "true")

    # Client-local cart/wishlist stores
    CART_STORAGE_DIR = os.getenv("CART_STORAGE_DIR", "./data/carts")

    # HTTP server
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8000"))
    REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "15"))

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Mystery Mart Environment Configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Is Production: {Config.IS_PRODUCTION}")
        logger.info(f"   Strict transitions: {Config.STRICT_STATUS_TRANSITIONS}")
        logger.info(f"   Tracking required for shipped: {Config.REQUIRE_TRACKING_FOR_SHIPPED}")
        logger.info(f"   Inline order messages: {Config.DISPATCH_ORDER_MESSAGES_INLINE}")

    @staticmethod
    def validate_production_config() -> Dict[str, Any]:
        """Collect configuration issues that would break a production deployment"""
        issues = []
        warnings = []

        if not Config.DATABASE_URL:
            issues.append("🚨 CRITICAL: DATABASE_URL not configured!")
        elif Config.IS_PRODUCTION and Config.DATABASE_URL.startswith("sqlite"):
            warnings.append("⚠️  WARNING: SQLite database configured in production")

        if Config.IS_PRODUCTION and not Config.STRICT_STATUS_TRANSITIONS:
            warnings.append("⚠️  WARNING: STRICT_STATUS_TRANSITIONS=false in production")

        if Config.OUTBOX_MAX_RETRIES < 1:
            issues.append("🚨 CRITICAL: OUTBOX_MAX_RETRIES must be at least 1")

        for issue in issues:
            logger.error(issue)
        for warning in warnings:
            logger.warning(warning)
        if not issues and not warnings:
            logger.info("✅ CONFIGURATION VALIDATION COMPLETE")

        return {"issues": issues, "warnings": warnings}
