"""
sceneparty.api.notifications
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

站内通知接口。
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from sceneparty.api.deps import get_current_user, get_services
from sceneparty.core.identity import User
from sceneparty.schemas.api_response import ApiResponse
from sceneparty.schemas.social import Notification, RespondBody
from sceneparty.services.app_services import AppServices

router: APIRouter = APIRouter()


@router.get("/notifications", summary="我的通知")
async def list_notifications(
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ApiResponse[list[Notification]]:
    """全部通知（含已处理的），最新的在前。"""
    return ApiResponse.ok(data=services.notifications.get_notifications(user.id))


@router.post("/notifications/{notification_id}", summary="响应通知")
async def respond_notification(
    notification_id: str,
    body: RespondBody,
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ApiResponse[Notification]:
    response = "accepted" if body.action == "accept" else "declined"
    notification = services.notifications.respond(notification_id, user.id, response)
    if notification is None:
        raise HTTPException(status_code=404, detail="通知不存在或已处理")
    return ApiResponse.ok(data=notification)
