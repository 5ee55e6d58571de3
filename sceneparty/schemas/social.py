"""
sceneparty.schemas.social
~~~~~~~~~~~~~~~~~~~~~~~~~

好友关系与站内通知的 Pydantic 模型。
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

FriendRequestStatus = Literal["pending", "accepted"]
SendFriendRequestResult = Literal["sent", "already_friends", "already_pending", "self"]
NotificationType = Literal["room-invite", "friend-request"]
NotificationStatus = Literal["pending", "accepted", "declined"]
NotificationResponse = Literal["accepted", "declined"]


class FriendRequest(BaseModel):
    """一条好友关系记录。任意一对用户之间最多存在一条。"""

    from_user_id: str
    from_user_name: str
    to_user_id: str
    to_user_name: str
    status: FriendRequestStatus = "pending"
    created_at: float = Field(..., description="创建时间（Unix 秒）")

    def involves(self, user_a: str, user_b: str) -> bool:
        """是否是 ``user_a`` 与 ``user_b`` 之间的记录（不区分方向）。"""
        return {self.from_user_id, self.to_user_id} == {user_a, user_b}


class Friend(BaseModel):
    id: str
    name: str


class IncomingRequest(BaseModel):
    from_user_id: str
    from_user_name: str


class OutgoingRequest(BaseModel):
    to_user_id: str
    to_user_name: str


class FriendsState(BaseModel):
    """某个用户的好友视图，推送与查询都返回此结构。"""

    friends: list[Friend] = Field(default_factory=list)
    pending_requests: list[IncomingRequest] = Field(default_factory=list)
    sent_requests: list[OutgoingRequest] = Field(default_factory=list)


class Notification(BaseModel):
    """站内通知。归属于接收者 ``user_id``，只会被接收者响应，永不删除。"""

    id: str
    user_id: str = Field(..., description="接收者 ID")
    type: NotificationType
    from_user_id: str
    from_user_name: str
    room_id: str | None = None
    status: NotificationStatus = "pending"
    created_at: float = Field(..., description="创建时间（Unix 秒）")


# ── 请求体 ────────────────────────────────────────────────────────────

class FriendRequestBody(BaseModel):
    to_user_id: str = Field(..., min_length=1, description="目标用户 ID")


class RespondBody(BaseModel):
    action: Literal["accept", "decline"]


class SendFriendRequestData(BaseModel):
    result: SendFriendRequestResult


class LoginBody(BaseModel):
    user_id: str = Field(..., min_length=1, description="内置测试账号 ID")
