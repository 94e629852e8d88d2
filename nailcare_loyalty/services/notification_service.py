"""
Notification Service.

In-app notifications only. Customers see rows addressed to their user id;
rows with user_id None are shown to every admin.

Types:
- SYSTEM: tier promotions and affiliate milestones
- ORDER: new order placed (admin)
- ORDER_STATUS: order updates (customer)
"""
from typing import Optional, Dict, Any, List
from flask import current_app

from ..extensions import db
from ..models.notification import Notification, NotificationType


class NotificationService:
    """Create and read in-app notifications."""

    def create(
        self,
        user_id: Optional[int],
        notification_type: str,
        title: str,
        message: str,
        extra_data: Dict[str, Any] = None,
        commit: bool = True
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            extra_data=extra_data or {},
        )
        db.session.add(notification)
        if commit:
            db.session.commit()

        current_app.logger.info(
            f"Notification created: {notification_type} '{title}' for "
            f"{'admins' if user_id is None else f'user {user_id}'}"
        )
        return notification

    def notify_admins(self, title: str, message: str, extra_data: Dict[str, Any] = None,
                      commit: bool = True) -> Notification:
        return self.create(None, NotificationType.ORDER.value, title, message, extra_data, commit)

    def has_notification(self, user_id: int, title: str) -> bool:
        return db.session.query(
            Notification.query.filter_by(user_id=user_id, title=title).exists()
        ).scalar()

    def list_for_user(self, user_id: int, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        query = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            query = query.filter_by(is_read=False)
        return query.order_by(Notification.created_at.desc()).limit(limit).all()


# Singleton instance
notification_service = NotificationService()
