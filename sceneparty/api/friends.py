"""
sceneparty.api.friends
~~~~~~~~~~~~~~~~~~~~~~

好友接口。所有端点都需要登录。

端点:
  - ``GET    /friends``               → 好友列表 + 收到 / 发出的请求
  - ``POST   /friends``               → 发送好友请求
  - ``POST   /friends/{friend_id}``   → 接受 / 拒绝对方发来的请求
  - ``DELETE /friends/{friend_id}``   → 解除好友
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from sceneparty.api.deps import get_current_user, get_services
from sceneparty.core.identity import User, find_test_user
from sceneparty.schemas.api_response import ApiResponse
from sceneparty.schemas.social import (
    FriendRequestBody,
    FriendsState,
    RespondBody,
    SendFriendRequestData,
)
from sceneparty.services.app_services import AppServices

router: APIRouter = APIRouter()


@router.get("/friends", summary="好友视图")
async def get_friends(
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ApiResponse[FriendsState]:
    return ApiResponse.ok(data=services.friends.get_friends_state(user.id))


@router.post("/friends", summary="发送好友请求")
async def send_friend_request(
    body: FriendRequestBody,
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ApiResponse[SendFriendRequestData]:
    """结果为 ``sent`` / ``already_friends`` / ``already_pending`` / ``self`` 之一。"""
    target = find_test_user(body.to_user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="用户不存在")
    result = services.friends.send_request(user, target)
    return ApiResponse.ok(data=SendFriendRequestData(result=result))


@router.post("/friends/{friend_id}", summary="处理好友请求")
async def respond_friend_request(
    friend_id: str,
    body: RespondBody,
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ApiResponse[FriendsState]:
    if body.action == "accept":
        handled = services.friends.accept_request(user.id, friend_id)
    else:
        handled = services.friends.decline_request(user.id, friend_id)
    if not handled:
        raise HTTPException(status_code=404, detail="没有待处理的好友请求")
    return ApiResponse.ok(data=services.friends.get_friends_state(user.id))


@router.delete("/friends/{friend_id}", summary="解除好友")
async def remove_friend(
    friend_id: str,
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ApiResponse[FriendsState]:
    if not services.friends.remove_friend(user.id, friend_id):
        raise HTTPException(status_code=404, detail="对方不是你的好友")
    return ApiResponse.ok(data=services.friends.get_friends_state(user.id))
