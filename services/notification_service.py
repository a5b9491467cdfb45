"""In-app notifications"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationService:

    def __init__(self, session: Session):
        self.session = session

    def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        notification_type: str = NotificationType.SYSTEM.value,
        action_url: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            action_url=action_url,
            data=data,
        )
        self.session.add(notification)
        self.session.flush()
        logger.info(f"🔔 NOTIFICATION_CREATED: user={user_id} type={notification_type} title={title!r}")
        return notification

    def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.id.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())

    def mark_all_read(self, user_id: str) -> int:
        result = self.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        return result.rowcount
