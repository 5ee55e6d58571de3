"""
sceneparty.api.rooms
~~~~~~~~~~~~~~~~~~~~

房间 REST 接口：房间管理、素材、聊天、邀请、生成任务。

端点:
  - ``POST   /rooms``                              → 创建房间
  - ``GET    /rooms``                              → 房间列表
  - ``GET    /rooms/{room_id}``                    → 房间完整状态
  - ``POST   /rooms/{room_id}/characters``         → 添加角色（上传图片或给出 URL）
  - ``DELETE /rooms/{room_id}/characters/{cid}``   → 移除自己添加的角色
  - ``POST   /rooms/{room_id}/outfits``            → 添加服装
  - ``DELETE /rooms/{room_id}/outfits/{oid}``      → 移除自己添加的服装
  - ``POST   /rooms/{room_id}/chat``               → 发送聊天消息
  - ``POST   /rooms/{room_id}/invite``             → 邀请好友进入房间
  - ``POST   /rooms/{room_id}/generate``           → 启动生成任务
  - ``DELETE /rooms/{room_id}/generate``            → 重置生成状态
  - ``GET    /genres``                             → 场景风格目录
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from sceneparty.api.deps import get_current_user, get_services
from sceneparty.core.genres import GENRES, Genre
from sceneparty.core.identity import User
from sceneparty.core.logging import get_logger
from sceneparty.schemas.api_response import ApiResponse
from sceneparty.schemas.rooms import (
    ChatRequest,
    CreateRoomData,
    GenerateRequest,
    InviteRequest,
    RoomCharacter,
    RoomOutfit,
    RoomSnapshot,
    RoomSummary,
)
from sceneparty.schemas.social import Notification
from sceneparty.services.app_services import AppServices

logger = get_logger(__name__)

router: APIRouter = APIRouter()

# 生成任务拒绝原因 → (HTTP 状态码, 提示)
_START_REJECTIONS: dict[str, tuple[int, str]] = {
    "not_found": (404, "房间不存在"),
    "no_characters": (400, "房间内还没有角色"),
    "in_progress": (409, "已有生成任务在进行中"),
    "unknown_genre": (400, "未知的场景风格"),
}


def _require_room(services: AppServices, room_id: str) -> None:
    if not services.rooms.room_exists(room_id):
        raise HTTPException(status_code=404, detail="房间不存在")


async def _resolve_image_url(
    services: AppServices, image: UploadFile | None, image_url: str | None,
) -> str:
    """上传的图片优先；都没有时返回 400。"""
    if image is not None:
        data = await image.read()
        if not data:
            raise HTTPException(status_code=400, detail="上传的图片为空")
        return await services.media.upload(
            data, image.content_type or "application/octet-stream", file_name=image.filename,
        )
    if image_url:
        return image_url
    raise HTTPException(status_code=400, detail="缺少图片：请上传 image 或提供 image_url")


# ── 房间管理 ──────────────────────────────────────────────────────────

@router.post("/rooms", summary="创建房间")
async def create_room(
    services: AppServices = Depends(get_services),
) -> ApiResponse[CreateRoomData]:
    room_id = services.rooms.create_room()
    return ApiResponse.ok(data=CreateRoomData(room_id=room_id))


@router.get("/rooms", summary="房间列表")
async def list_rooms(
    services: AppServices = Depends(get_services),
) -> ApiResponse[list[RoomSummary]]:
    return ApiResponse.ok(data=services.rooms.list_rooms())


@router.get("/rooms/{room_id}", summary="获取房间状态")
async def get_room(
    room_id: str, services: AppServices = Depends(get_services),
) -> ApiResponse[RoomSnapshot]:
    """返回房间的完整快照（成员、素材、生成进度、聊天）。"""
    snapshot = services.rooms.get_snapshot(room_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="房间不存在")
    return ApiResponse.ok(data=snapshot)


# ── 素材 ──────────────────────────────────────────────────────────────

@router.post("/rooms/{room_id}/characters", summary="添加角色")
async def add_character(
    room_id: str,
    asset_id: str = Form(..., alias="id", description="角色 ID"),
    name: str = Form(..., description="角色名称"),
    image: UploadFile | None = File(default=None, description="角色图片"),
    image_url: str | None = Form(default=None, description="已有的图片 URL"),
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ApiResponse[RoomCharacter]:
    """添加角色。同一用户重复添加同一 ID 不会产生重复记录。"""
    _require_room(services, room_id)
    url = await _resolve_image_url(services, image, image_url)
    character = RoomCharacter(
        id=asset_id, name=name, image_url=url, user_id=user.id, user_name=user.name,
    )
    services.rooms.add_character(room_id, character)
    return ApiResponse.ok(data=character)


@router.delete("/rooms/{room_id}/characters/{character_id}", summary="移除角色")
async def remove_character(
    room_id: str,
    character_id: str,
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ApiResponse[None]:
    """只会移除当前用户自己添加的同 ID 角色。"""
    _require_room(services, room_id)
    services.rooms.remove_character(room_id, character_id, user.id)
    return ApiResponse.ok(data=None)


@router.post("/rooms/{room_id}/outfits", summary="添加服装")
async def add_outfit(
    room_id: str,
    asset_id: str = Form(..., alias="id", description="服装 ID"),
    name: str = Form(..., description="服装名称"),
    image: UploadFile | None = File(default=None, description="服装图片"),
    image_url: str | None = Form(default=None, description="已有的图片 URL"),
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ApiResponse[RoomOutfit]:
    _require_room(services, room_id)
    url = await _resolve_image_url(services, image, image_url)
    outfit = RoomOutfit(
        id=asset_id, name=name, image_url=url, user_id=user.id, user_name=user.name,
    )
    services.rooms.add_outfit(room_id, outfit)
    return ApiResponse.ok(data=outfit)


@router.delete("/rooms/{room_id}/outfits/{outfit_id}", summary="移除服装")
async def remove_outfit(
    room_id: str,
    outfit_id: str,
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ApiResponse[None]:
    _require_room(services, room_id)
    services.rooms.remove_outfit(room_id, outfit_id, user.id)
    return ApiResponse.ok(data=None)


# ── 聊天与邀请 ────────────────────────────────────────────────────────

@router.post("/rooms/{room_id}/chat", summary="发送聊天消息")
async def send_chat(
    room_id: str,
    body: ChatRequest,
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ApiResponse[None]:
    if not services.rooms.add_message(room_id, user, body.text):
        raise HTTPException(status_code=404, detail="房间不存在")
    return ApiResponse.ok(data=None)


@router.post("/rooms/{room_id}/invite", summary="邀请好友")
async def invite_friend(
    room_id: str,
    body: InviteRequest,
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ApiResponse[Notification]:
    """给好友发送房间邀请通知，只能邀请已经是好友的用户。"""
    _require_room(services, room_id)
    if not services.friends.are_friends(user.id, body.friend_id):
        raise HTTPException(status_code=403, detail="对方还不是你的好友")
    notification = services.notifications.create(
        body.friend_id, "room-invite", user, room_id=room_id,
    )
    return ApiResponse.ok(data=notification)


# ── 生成任务 ──────────────────────────────────────────────────────────

@router.post("/rooms/{room_id}/generate", summary="启动生成任务", status_code=202)
async def start_generation(
    room_id: str,
    body: GenerateRequest | None = None,
    services: AppServices = Depends(get_services),
) -> ApiResponse[None]:
    """受理后立即返回，进度通过房间推送通道下发。"""
    body = body or GenerateRequest()
    result = services.generation.start(
        room_id,
        image_prompt=body.image_prompt,
        video_prompt=body.video_prompt,
        genre_id=body.genre_id,
        scenes=body.scenes,
    )
    if result != "accepted":
        status_code, detail = _START_REJECTIONS[result]
        logger.info("生成任务被拒绝 | room=%s | reason=%s", room_id, result)
        raise HTTPException(status_code=status_code, detail=detail)
    return ApiResponse.ok(data=None, msg="accepted", code=202)


@router.delete("/rooms/{room_id}/generate", summary="重置生成状态")
async def reset_generation(
    room_id: str, services: AppServices = Depends(get_services),
) -> ApiResponse[None]:
    if not services.generation.reset(room_id):
        raise HTTPException(status_code=404, detail="房间不存在")
    return ApiResponse.ok(data=None)


@router.get("/genres", summary="场景风格目录")
async def list_genres() -> ApiResponse[list[Genre]]:
    return ApiResponse.ok(data=GENRES)
