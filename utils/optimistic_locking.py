"""
Optimistic Locking Infrastructure
Version-based concurrency control for order status writes
"""

import logging
from typing import Any, Dict, Optional, Type

from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from models import Base
from utils.exception_handler import ConflictError, NotFoundError
from utils.helpers import utc_now

logger = logging.getLogger(__name__)


class OptimisticLockManager:
    """
    Manager for optimistic locking operations.
    Handles version-based compare-and-swap updates and conflict detection.
    """

    def __init__(self, session: Session):
        self.session = session

    def versioned_update(
        self,
        model_class: Type[Base],
        entity_id: Any,
        updates: Dict[str, Any],
        current_version: Optional[int] = None
    ) -> int:
        """
        Perform version-controlled update

        Args:
            model_class: SQLAlchemy model class with ``id`` and ``version`` columns
            entity_id: Primary key value
            updates: Dictionary of field updates
            current_version: Expected current version (fetched if not provided)

        Returns:
            int: the new version

        Raises:
            ConflictError: If the stored version no longer matches
            NotFoundError: If the entity is missing and no version was given
        """
        if current_version is None:
            current_obj = self.session.get(model_class, entity_id)
            if current_obj is None:
                raise NotFoundError(f"{model_class.__name__} id={entity_id} not found")
            current_version = current_obj.version

        new_version = current_version + 1
        update_values = {
            **updates,
            'version': new_version,
            'updated_at': utc_now()
        }

        stmt = (
            update(model_class)
            .where(model_class.id == entity_id, model_class.version == current_version)
            .values(update_values)
            .execution_options(synchronize_session=False)
        )

        try:
            result = self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"❌ Database error during versioned update: {e}")
            raise

        if result.rowcount == 0:
            logger.warning(
                f"🔒 Optimistic lock conflict: {model_class.__name__} id={entity_id} "
                f"expected_version={current_version}"
            )
            raise ConflictError(
                f"Version conflict for {model_class.__name__} id={entity_id}. "
                f"Expected version {current_version} but entity was modified by another process."
            )

        logger.debug(
            f"✅ Versioned update successful: {model_class.__name__} id={entity_id} "
            f"v{current_version} → v{new_version}"
        )
        return new_version
