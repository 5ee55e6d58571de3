"""
sceneparty.services.friends
~~~~~~~~~~~~~~~~~~~~~~~~~~~

好友关系服务：按用户 ID 广播好友视图。

所有关系保存在一个扁平的 ``FriendRequest`` 列表中，任意一对用户之间最多一条：
``pending`` → ``accepted``，或者直接删除（拒绝 / 解除好友）。
"""
from __future__ import annotations

import time

from sceneparty.core.identity import User
from sceneparty.core.logging import get_logger
from sceneparty.schemas.social import (
    Friend,
    FriendRequest,
    FriendsState,
    IncomingRequest,
    OutgoingRequest,
    SendFriendRequestResult,
)
from sceneparty.services.publisher import Listener, Publisher

logger = get_logger(__name__)


class FriendService:
    """好友请求与好友列表管理。"""

    def __init__(self) -> None:
        self._requests: list[FriendRequest] = []
        self._publisher: Publisher[FriendsState] = Publisher("friends")

    # ── 修改操作 ──────────────────────────────────────────────────────

    def send_request(self, from_user: User, to_user: User) -> SendFriendRequestResult:
        """发送好友请求。四种结果都是正常的界面状态，不抛异常。"""
        if from_user.id == to_user.id:
            return "self"

        existing = self._find_between(from_user.id, to_user.id)
        if existing is not None and existing.status == "accepted":
            return "already_friends"
        if existing is not None:
            return "already_pending"

        self._requests.append(
            FriendRequest(
                from_user_id=from_user.id,
                from_user_name=from_user.name,
                to_user_id=to_user.id,
                to_user_name=to_user.name,
                created_at=time.time(),
            ),
        )
        logger.info("好友请求已发送 | from=%s | to=%s", from_user.id, to_user.id)
        self._broadcast(to_user.id)
        return "sent"

    def accept_request(self, user_id: str, from_user_id: str) -> bool:
        """接受 ``from_user_id`` 发给 ``user_id`` 的待处理请求。"""
        request = self._find_pending(user_id, from_user_id)
        if request is None:
            return False
        request.status = "accepted"
        logger.info("好友请求已接受 | user=%s | from=%s", user_id, from_user_id)
        self._broadcast(user_id)
        self._broadcast(from_user_id)
        return True

    def decline_request(self, user_id: str, from_user_id: str) -> bool:
        """拒绝请求：直接删除记录，只通知接收方。"""
        request = self._find_pending(user_id, from_user_id)
        if request is None:
            return False
        self._requests.remove(request)
        logger.info("好友请求已拒绝 | user=%s | from=%s", user_id, from_user_id)
        self._broadcast(user_id)
        return True

    def remove_friend(self, user_id: str, friend_id: str) -> bool:
        """解除好友关系，通知双方。"""
        existing = self._find_between(user_id, friend_id)
        if existing is None or existing.status != "accepted":
            return False
        self._requests.remove(existing)
        logger.info("好友关系已解除 | user=%s | friend=%s", user_id, friend_id)
        self._broadcast(user_id)
        self._broadcast(friend_id)
        return True

    # ── 只读视图 ──────────────────────────────────────────────────────

    def get_friends(self, user_id: str) -> list[Friend]:
        friends: list[Friend] = []
        for r in self._requests:
            if r.status != "accepted":
                continue
            if r.from_user_id == user_id:
                friends.append(Friend(id=r.to_user_id, name=r.to_user_name))
            elif r.to_user_id == user_id:
                friends.append(Friend(id=r.from_user_id, name=r.from_user_name))
        return friends

    def are_friends(self, user_id: str, other_id: str) -> bool:
        existing = self._find_between(user_id, other_id)
        return existing is not None and existing.status == "accepted"

    def get_pending_requests(self, user_id: str) -> list[FriendRequest]:
        """别人发给 ``user_id`` 的待处理请求。"""
        return [r for r in self._requests if r.to_user_id == user_id and r.status == "pending"]

    def get_sent_requests(self, user_id: str) -> list[FriendRequest]:
        """``user_id`` 发出且尚未处理的请求。"""
        return [r for r in self._requests if r.from_user_id == user_id and r.status == "pending"]

    def get_friends_state(self, user_id: str) -> FriendsState:
        return FriendsState(
            friends=self.get_friends(user_id),
            pending_requests=[
                IncomingRequest(from_user_id=r.from_user_id, from_user_name=r.from_user_name)
                for r in self.get_pending_requests(user_id)
            ],
            sent_requests=[
                OutgoingRequest(to_user_id=r.to_user_id, to_user_name=r.to_user_name)
                for r in self.get_sent_requests(user_id)
            ],
        )

    # ── 订阅 ──────────────────────────────────────────────────────────

    def subscribe(self, user_id: str, listener: Listener[FriendsState]) -> None:
        self._publisher.subscribe(user_id, listener)

    def unsubscribe(self, user_id: str, listener: Listener[FriendsState]) -> None:
        self._publisher.unsubscribe(user_id, listener)

    def close(self) -> None:
        self._publisher.clear()

    # ── 内部 ──────────────────────────────────────────────────────────

    def _find_between(self, user_a: str, user_b: str) -> FriendRequest | None:
        return next((r for r in self._requests if r.involves(user_a, user_b)), None)

    def _find_pending(self, to_user_id: str, from_user_id: str) -> FriendRequest | None:
        return next(
            (
                r for r in self._requests
                if r.from_user_id == from_user_id
                and r.to_user_id == to_user_id
                and r.status == "pending"
            ),
            None,
        )

    def _broadcast(self, user_id: str) -> None:
        self._publisher.publish(user_id, self.get_friends_state(user_id))
