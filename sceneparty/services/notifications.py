"""
sceneparty.services.notifications
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

站内通知服务：房间邀请等跨房间消息。

通知归属于接收者，只能由接收者响应；处理过的通知保留历史状态，
但实时推送只下发仍为 ``pending`` 的通知。
"""
from __future__ import annotations

import time
import uuid

from sceneparty.core.identity import User
from sceneparty.core.logging import get_logger
from sceneparty.schemas.social import Notification, NotificationResponse, NotificationType
from sceneparty.services.publisher import Listener, Publisher

logger = get_logger(__name__)


class NotificationService:
    """通知的创建、查询与响应。"""

    def __init__(self) -> None:
        self._notifications: list[Notification] = []
        self._publisher: Publisher[list[Notification]] = Publisher("notifications")

    def create(
        self,
        user_id: str,
        type: NotificationType,
        from_user: User,
        room_id: str | None = None,
    ) -> Notification:
        """为 ``user_id`` 创建一条待处理通知并推送。"""
        notification = Notification(
            id=uuid.uuid4().hex[:8],
            user_id=user_id,
            type=type,
            from_user_id=from_user.id,
            from_user_name=from_user.name,
            room_id=room_id,
            created_at=time.time(),
        )
        self._notifications.append(notification)
        logger.info(
            "通知已创建 | id=%s | type=%s | to=%s | from=%s",
            notification.id, type, user_id, from_user.id,
        )
        self._broadcast(user_id)
        return notification

    def get_notifications(self, user_id: str) -> list[Notification]:
        """``user_id`` 的全部通知，最新的在前。"""
        owned = [n for n in self._notifications if n.user_id == user_id]
        return sorted(owned, key=lambda n: n.created_at, reverse=True)

    def get_pending(self, user_id: str) -> list[Notification]:
        return [n for n in self.get_notifications(user_id) if n.status == "pending"]

    def respond(
        self, notification_id: str, user_id: str, response: NotificationResponse,
    ) -> Notification | None:
        """响应一条属于 ``user_id`` 且仍待处理的通知。

        Returns:
            更新后的通知；不存在、不属于该用户或已处理时返回 ``None``。
        """
        notification = next(
            (
                n for n in self._notifications
                if n.id == notification_id and n.user_id == user_id and n.status == "pending"
            ),
            None,
        )
        if notification is None:
            return None
        notification.status = response
        logger.info("通知已响应 | id=%s | user=%s | %s", notification_id, user_id, response)
        self._broadcast(user_id)
        return notification

    def subscribe(self, user_id: str, listener: Listener[list[Notification]]) -> None:
        self._publisher.subscribe(user_id, listener)

    def unsubscribe(self, user_id: str, listener: Listener[list[Notification]]) -> None:
        self._publisher.unsubscribe(user_id, listener)

    def close(self) -> None:
        self._publisher.clear()

    def _broadcast(self, user_id: str) -> None:
        self._publisher.publish(user_id, self.get_pending(user_id))
