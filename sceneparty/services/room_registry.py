"""
sceneparty.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表：独占所有 ``Room`` 实例，管理成员、素材、聊天与生成状态。

每个修改操作完成后都会同步广播一次房间快照（``serialize_room``）。
对不存在的房间 ID 的所有操作都是空操作并返回假值，不抛异常，
由路由层负责映射为 404。
"""
from __future__ import annotations

import time
import uuid
from typing import Any

from sceneparty.core.identity import User
from sceneparty.core.logging import get_logger
from sceneparty.schemas.rooms import (
    ChatMessage,
    Member,
    RoomAsset,
    RoomCharacter,
    RoomGeneration,
    RoomOutfit,
    RoomSnapshot,
    RoomSummary,
)
from sceneparty.services.publisher import Listener, Publisher

logger = get_logger(__name__)


class Room:
    """一个协作房间的内存状态。

    Attributes:
        id: 房间唯一标识（8 位短码）。
        members: 用户 ID → 成员。
        characters: 角色素材，按加入顺序。
        outfits: 服装素材，按加入顺序。
        generation: 当前生成任务，没有则为 ``None``。
        messages: 最近的聊天消息。
    """

    def __init__(self, room_id: str) -> None:
        self.id = room_id
        self.members: dict[str, Member] = {}
        self.characters: list[RoomCharacter] = []
        self.outfits: list[RoomOutfit] = []
        self.generation: RoomGeneration | None = None
        self.messages: list[ChatMessage] = []


def serialize_room(room: Room) -> RoomSnapshot:
    """把房间投影为对外可见的快照。"""
    return RoomSnapshot(
        id=room.id,
        members=list(room.members.values()),
        characters=list(room.characters),
        outfits=list(room.outfits),
        generation=room.generation,
        messages=list(room.messages),
    )


def _add_asset(assets: list[Any], asset: RoomAsset) -> bool:
    """按 ``(id, user_id)`` 去重追加，返回是否真正新增。"""
    if any(a.id == asset.id and a.user_id == asset.user_id for a in assets):
        return False
    assets.append(asset)
    return True


def _remove_asset(assets: list[Any], asset_id: str, user_id: str) -> list[Any]:
    """只移除该用户自己贡献的那一份。"""
    return [a for a in assets if not (a.id == asset_id and a.user_id == user_id)]


class RoomRegistry:
    """房间注册表（随应用生命周期存在）。

    - ``create_room()``            → 新建房间
    - ``join_room / leave_room``   → 成员管理
    - ``add_* / remove_*``         → 素材管理（按 ``(id, user_id)`` 识别）
    - ``set_generation``           → 整体替换生成状态
    - ``update_pipeline``          → 合并单个场景的进度
    - ``subscribe / unsubscribe``  → 监听房间快照
    """

    def __init__(self, chat_history_limit: int = 100) -> None:
        self._rooms: dict[str, Room] = {}
        self._publisher: Publisher[RoomSnapshot] = Publisher("rooms")
        self.chat_history_limit = chat_history_limit

    # ── 生命周期 ──────────────────────────────────────────────────────

    def create_room(self) -> str:
        """创建空房间并返回其 ID。"""
        room_id = uuid.uuid4().hex[:8]
        while room_id in self._rooms:
            room_id = uuid.uuid4().hex[:8]
        self._rooms[room_id] = Room(room_id)
        logger.info("房间已创建 | room=%s", room_id)
        return room_id

    def get_room(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def room_exists(self, room_id: str) -> bool:
        return room_id in self._rooms

    def get_snapshot(self, room_id: str) -> RoomSnapshot | None:
        """获取房间当前快照，房间不存在返回 ``None``。"""
        room = self._rooms.get(room_id)
        return serialize_room(room) if room else None

    def list_rooms(self) -> list[RoomSummary]:
        """列出所有房间的摘要信息。"""
        return [
            RoomSummary(
                id=room.id,
                member_count=len(room.members),
                character_count=len(room.characters),
                stage=room.generation.stage if room.generation else None,
            )
            for room in self._rooms.values()
        ]

    # ── 成员 ──────────────────────────────────────────────────────────

    def join_room(self, room_id: str, user: User) -> bool:
        """加入房间，重复加入会覆盖显示名称。"""
        room = self._rooms.get(room_id)
        if room is None:
            return False
        room.members[user.id] = Member(id=user.id, name=user.name)
        logger.info("成员加入 | room=%s | user=%s | 在线: %d", room_id, user.id, len(room.members))
        self._broadcast(room)
        return True

    def leave_room(self, room_id: str, user_id: str) -> None:
        room = self._rooms.get(room_id)
        if room is None:
            return
        room.members.pop(user_id, None)
        logger.info("成员离开 | room=%s | user=%s | 在线: %d", room_id, user_id, len(room.members))
        self._broadcast(room)

    # ── 素材 ──────────────────────────────────────────────────────────

    def add_character(self, room_id: str, character: RoomCharacter) -> bool:
        room = self._rooms.get(room_id)
        if room is None:
            return False
        if _add_asset(room.characters, character):
            logger.info("角色已加入 | room=%s | character=%s | user=%s", room_id, character.id, character.user_id)
        # 重复添加也广播一次，客户端总能拿到最新快照
        self._broadcast(room)
        return True

    def remove_character(self, room_id: str, character_id: str, user_id: str) -> None:
        room = self._rooms.get(room_id)
        if room is None:
            return
        room.characters = _remove_asset(room.characters, character_id, user_id)
        self._broadcast(room)

    def add_outfit(self, room_id: str, outfit: RoomOutfit) -> bool:
        room = self._rooms.get(room_id)
        if room is None:
            return False
        if _add_asset(room.outfits, outfit):
            logger.info("服装已加入 | room=%s | outfit=%s | user=%s", room_id, outfit.id, outfit.user_id)
        self._broadcast(room)
        return True

    def remove_outfit(self, room_id: str, outfit_id: str, user_id: str) -> None:
        room = self._rooms.get(room_id)
        if room is None:
            return
        room.outfits = _remove_asset(room.outfits, outfit_id, user_id)
        self._broadcast(room)

    # ── 聊天 ──────────────────────────────────────────────────────────

    def add_message(self, room_id: str, user: User, text: str) -> bool:
        """追加一条聊天消息，只保留最近 ``chat_history_limit`` 条。"""
        room = self._rooms.get(room_id)
        if room is None:
            return False
        room.messages.append(
            ChatMessage(
                id=uuid.uuid4().hex[:8],
                user_id=user.id,
                user_name=user.name,
                text=text,
                created_at=time.time(),
            ),
        )
        if len(room.messages) > self.chat_history_limit:
            room.messages = room.messages[-self.chat_history_limit:]
        self._broadcast(room)
        return True

    # ── 生成状态 ──────────────────────────────────────────────────────

    def set_generation(self, room_id: str, generation: RoomGeneration | None) -> None:
        """整体替换生成状态（``None`` 表示清空）。"""
        room = self._rooms.get(room_id)
        if room is None:
            return
        room.generation = generation
        self._broadcast(room)

    def update_pipeline(
        self,
        room_id: str,
        index: int,
        update: dict[str, Any],
        run_id: str | None = None,
    ) -> bool:
        """把 ``update`` 合并到 ``pipelines[index]``。

        以下情况静默忽略（生成任务可能已被重置或被新任务取代）：
        房间不存在、没有生成任务、``run_id`` 与当前任务不一致、下标越界。

        Returns:
            是否真正写入。
        """
        room = self._rooms.get(room_id)
        if room is None or room.generation is None:
            return False
        generation = room.generation
        if run_id is not None and generation.run_id != run_id:
            return False
        if not 0 <= index < len(generation.pipelines):
            return False

        current = generation.pipelines[index]
        merged = current.model_copy(update=update)
        # 完成标志只进不退
        merged.image_done = current.image_done or merged.image_done
        merged.video_done = current.video_done or merged.video_done
        pipelines = list(generation.pipelines)
        pipelines[index] = merged
        room.generation = generation.model_copy(update={"pipelines": pipelines})
        self._broadcast(room)
        return True

    # ── 订阅 ──────────────────────────────────────────────────────────

    def subscribe(self, room_id: str, listener: Listener[RoomSnapshot]) -> None:
        if room_id in self._rooms:
            self._publisher.subscribe(room_id, listener)

    def unsubscribe(self, room_id: str, listener: Listener[RoomSnapshot]) -> None:
        self._publisher.unsubscribe(room_id, listener)

    def listener_count(self, room_id: str) -> int:
        return self._publisher.listener_count(room_id)

    def close(self) -> None:
        self._publisher.clear()

    def _broadcast(self, room: Room) -> None:
        self._publisher.publish(room.id, serialize_room(room))
