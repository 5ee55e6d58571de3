"""
sceneparty.api.music
~~~~~~~~~~~~~~~~~~~~

房间背景音乐控制接口。

``POST /rooms/{room_id}/music`` 的 ``action``:
  - ``play``        → 建立新连接并播放（需要 ``prompts``，可选 ``config``）
  - ``pause`` / ``resume``
  - ``stop``        → 关闭连接，回到 idle
  - ``set_prompts`` → 替换 Prompt（需要 ``prompts``）
  - ``set_config``  → 更新生成参数（需要 ``config``，可选 ``reset_context``）

控制结果（包括连接失败）体现在返回的 ``MusicState`` 中，不会变成 HTTP 错误。
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from sceneparty.api.deps import get_services
from sceneparty.core.logging import get_logger
from sceneparty.schemas.api_response import ApiResponse
from sceneparty.schemas.music import MusicCommand, MusicState
from sceneparty.services.app_services import AppServices

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.get("/rooms/{room_id}/music", summary="获取音乐状态")
async def get_music(
    room_id: str, services: AppServices = Depends(get_services),
) -> ApiResponse[MusicState]:
    if not services.rooms.room_exists(room_id):
        raise HTTPException(status_code=404, detail="房间不存在")
    return ApiResponse.ok(data=services.music.get_state(room_id))


@router.post("/rooms/{room_id}/music", summary="控制背景音乐")
async def control_music(
    room_id: str,
    command: MusicCommand,
    services: AppServices = Depends(get_services),
) -> ApiResponse[MusicState]:
    if not services.rooms.room_exists(room_id):
        raise HTTPException(status_code=404, detail="房间不存在")
    logger.info("音乐控制 | room=%s | action=%s", room_id, command.action)

    music = services.music
    if command.action == "play":
        if not command.prompts:
            raise HTTPException(status_code=400, detail="至少需要一个 Prompt")
        state = await music.start(room_id, command.prompts, command.config)
    elif command.action == "pause":
        state = await music.pause(room_id)
    elif command.action == "resume":
        state = await music.resume(room_id)
    elif command.action == "stop":
        state = await music.stop(room_id)
    elif command.action == "set_prompts":
        if not command.prompts:
            raise HTTPException(status_code=400, detail="至少需要一个 Prompt")
        state = await music.update_prompts(room_id, command.prompts)
    else:
        if command.config is None:
            raise HTTPException(status_code=400, detail="缺少 config")
        state = await music.update_config(
            room_id, command.config, reset_context=command.reset_context,
        )

    return ApiResponse.ok(data=state)
