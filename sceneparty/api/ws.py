"""
sceneparty.api.ws
~~~~~~~~~~~~~~~~~

WebSocket 推送端点。每条连接先收到一次完整的当前状态，之后每次变化推送一条。

端点:
  - ``/ws/rooms/{room_id}``        → ``update``（连接即加入房间，断开即离开）
  - ``/ws/rooms/{room_id}/music``  → ``music-format`` / ``music-state`` / ``audio`` / ``music-filtered``
  - ``/ws/friends``                → ``friends``
  - ``/ws/notifications``          → ``notifications``

连接被拒绝时以 4xxx 关闭码结束：4401 未登录，4404 房间不存在。
"""
from __future__ import annotations

import uuid
from contextvars import Token

from fastapi import APIRouter, WebSocket

from sceneparty.api.deps import get_ws_services, get_ws_user
from sceneparty.core.config import settings
from sceneparty.core.logging import get_logger, request_id_ctx_var
from sceneparty.schemas.music import MusicFormat
from sceneparty.services.push_channel import PushChannel

logger = get_logger(__name__)

router: APIRouter = APIRouter()

CLOSE_UNAUTHORIZED = 4401
CLOSE_NOT_FOUND = 4404


def _bind_request_id() -> Token[str]:
    return request_id_ctx_var.set(f"ws-{uuid.uuid4().hex[:8]}")


@router.websocket("/ws/rooms/{room_id}")
async def room_updates(websocket: WebSocket, room_id: str) -> None:
    """房间状态推送。连接期间当前用户是房间成员。"""
    token = _bind_request_id()
    try:
        services = get_ws_services(websocket)
        if not services.rooms.room_exists(room_id):
            await websocket.close(code=CLOSE_NOT_FOUND)
            return
        user = get_ws_user(websocket)
        if user is None:
            await websocket.close(code=CLOSE_UNAUTHORIZED)
            return

        await websocket.accept()
        channel = PushChannel(websocket, f"room:{room_id}", settings.WS_QUEUE_SIZE)
        listener = channel.listener("update")

        services.rooms.join_room(room_id, user)
        # 基线快照与订阅之间不能有 await，否则会漏掉中间的变化
        channel.push("update", services.rooms.get_snapshot(room_id))
        services.rooms.subscribe(room_id, listener)
        logger.info("房间推送已连接 | room=%s | user=%s", room_id, user.id)

        try:
            await channel.run()
        finally:
            services.rooms.unsubscribe(room_id, listener)
            services.rooms.leave_room(room_id, user.id)
            logger.info("房间推送已断开 | room=%s | user=%s", room_id, user.id)
    finally:
        request_id_ctx_var.reset(token)


@router.websocket("/ws/rooms/{room_id}/music")
async def music_stream(websocket: WebSocket, room_id: str) -> None:
    """背景音乐推送：先下发音频格式和当前状态，再持续推送 base64 PCM 帧。"""
    token = _bind_request_id()
    try:
        services = get_ws_services(websocket)
        if not services.rooms.room_exists(room_id):
            await websocket.close(code=CLOSE_NOT_FOUND)
            return

        await websocket.accept()
        channel = PushChannel(websocket, f"music:{room_id}", settings.WS_AUDIO_QUEUE_SIZE)
        on_audio = channel.listener("audio")
        on_state = channel.listener("music-state")
        on_filtered = channel.listener("music-filtered")

        music = services.music
        channel.push(
            "music-format",
            MusicFormat(sample_rate_hz=settings.MUSIC_SAMPLE_RATE, channels=settings.MUSIC_CHANNELS),
        )
        channel.push("music-state", music.get_state(room_id))
        music.subscribe_audio(room_id, on_audio)
        music.subscribe_state(room_id, on_state)
        music.subscribe_filtered(room_id, on_filtered)
        logger.info("音乐推送已连接 | room=%s", room_id)

        try:
            await channel.run()
        finally:
            music.unsubscribe_audio(room_id, on_audio)
            music.unsubscribe_state(room_id, on_state)
            music.unsubscribe_filtered(room_id, on_filtered)
            logger.info("音乐推送已断开 | room=%s", room_id)
    finally:
        request_id_ctx_var.reset(token)


@router.websocket("/ws/friends")
async def friends_updates(websocket: WebSocket) -> None:
    token = _bind_request_id()
    try:
        services = get_ws_services(websocket)
        user = get_ws_user(websocket)
        if user is None:
            await websocket.close(code=CLOSE_UNAUTHORIZED)
            return

        await websocket.accept()
        channel = PushChannel(websocket, f"friends:{user.id}", settings.WS_QUEUE_SIZE)
        listener = channel.listener("friends")
        channel.push("friends", services.friends.get_friends_state(user.id))
        services.friends.subscribe(user.id, listener)

        try:
            await channel.run()
        finally:
            services.friends.unsubscribe(user.id, listener)
    finally:
        request_id_ctx_var.reset(token)


@router.websocket("/ws/notifications")
async def notifications_updates(websocket: WebSocket) -> None:
    """只推送仍待处理的通知。"""
    token = _bind_request_id()
    try:
        services = get_ws_services(websocket)
        user = get_ws_user(websocket)
        if user is None:
            await websocket.close(code=CLOSE_UNAUTHORIZED)
            return

        await websocket.accept()
        channel = PushChannel(websocket, f"notifications:{user.id}", settings.WS_QUEUE_SIZE)
        listener = channel.listener("notifications")
        channel.push("notifications", services.notifications.get_pending(user.id))
        services.notifications.subscribe(user.id, listener)

        try:
            await channel.run()
        finally:
            services.notifications.unsubscribe(user.id, listener)
    finally:
        request_id_ctx_var.reset(token)
