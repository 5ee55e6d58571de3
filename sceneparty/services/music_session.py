"""
sceneparty.services.music_session
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间背景音乐会话管理：每个房间最多一条实时音乐连接，
音频帧和状态通过广播器分发给房间内的所有播放端。

状态机::

    idle --start--> connecting --成功--> playing <--pause/resume--> paused
                        失败 --> error
    playing|paused --连接关闭--> stopped（已是 error 时保持 error）
    (任意) --stop--> idle

同一房间重复 ``start`` 时先关闭旧连接，旧连接之后触发的回调一律忽略。
"""
from __future__ import annotations

import base64

from sceneparty.core.logging import get_logger
from sceneparty.schemas.music import MusicConfig, MusicState, WeightedPrompt
from sceneparty.services.music_connection import ConnectionFactory, MusicConnection
from sceneparty.services.publisher import Listener, Publisher

logger = get_logger(__name__)


def _error_message(e: BaseException) -> str:
    return str(e) or e.__class__.__name__


class _RoomMusic:
    """单个房间的音乐状态与当前连接。"""

    __slots__ = ("state", "connection")

    def __init__(self) -> None:
        self.state = MusicState()
        self.connection: MusicConnection | None = None


class MusicSessionManager:
    """按房间管理实时音乐连接。

    Attributes:
        connection_factory: 创建 ``MusicConnection`` 的工厂，
            以关键字参数接收 ``on_audio`` / ``on_error`` / ``on_close`` / ``on_filtered_prompt``。
    """

    def __init__(self, connection_factory: ConnectionFactory) -> None:
        self.connection_factory = connection_factory
        self._rooms: dict[str, _RoomMusic] = {}
        self._audio: Publisher[str] = Publisher("music-audio")
        self._state: Publisher[MusicState] = Publisher("music-state")
        self._filtered: Publisher[str] = Publisher("music-filtered")

    # ── 查询 ──────────────────────────────────────────────────────────

    def get_state(self, room_id: str) -> MusicState:
        entry = self._rooms.get(room_id)
        return entry.state if entry is not None else MusicState()

    def has_session(self, room_id: str) -> bool:
        entry = self._rooms.get(room_id)
        return entry is not None and entry.connection is not None

    # ── 控制 ──────────────────────────────────────────────────────────

    async def start(
        self,
        room_id: str,
        prompts: list[WeightedPrompt],
        config: MusicConfig | None = None,
    ) -> MusicState:
        """为房间建立新的音乐连接并开始播放。

        已有连接时先关闭（关闭失败只记录日志）。任何一步失败都会进入 ``error`` 状态，
        且不保留连接引用。被放弃的连接（失败或被取代）一律关闭。
        """
        entry = self._ensure(room_id)
        config = config or MusicConfig()

        if entry.connection is not None:
            logger.info("房间已有音乐连接，先关闭旧连接 | room=%s", room_id)
            old, entry.connection = entry.connection, None
            await self._close_quietly(room_id, old)

        self._set_state(room_id, MusicState(status="connecting", prompts=prompts, config=config))
        logger.info("音乐连接建立中 | room=%s | prompts=%d", room_id, len(prompts))

        connection = self._create_connection(room_id, entry)
        entry.connection = connection
        try:
            await connection.connect()
            await connection.set_prompts(prompts)
            await connection.set_config(config)
            await connection.play()
        except Exception as e:
            if entry.connection is connection:
                logger.error("音乐启动失败 | room=%s | %s", room_id, e, exc_info=True)
                entry.connection = None
                self._set_state(
                    room_id,
                    MusicState(status="error", prompts=prompts, config=config, error=_error_message(e)),
                )
            else:
                logger.info("音乐启动已被取代 | room=%s | %s", room_id, e)
            await self._close_quietly(room_id, connection)
            return entry.state

        if entry.connection is not connection:
            # 启动过程中已被 stop 或新的 start 取代，握手可能在关闭之后才完成
            await self._close_quietly(room_id, connection)
            return entry.state
        self._set_state(room_id, MusicState(status="playing", prompts=prompts, config=config))
        logger.info("音乐开始播放 | room=%s", room_id)
        return entry.state

    async def pause(self, room_id: str) -> MusicState:
        entry = self._rooms.get(room_id)
        if entry is None or entry.connection is None:
            logger.info("暂停音乐：房间没有活动连接 | room=%s", room_id)
            return self.get_state(room_id)
        try:
            await entry.connection.pause()
        except Exception as e:
            self._record_error(room_id, entry, "暂停音乐失败", e)
        else:
            self._set_state(room_id, entry.state.model_copy(update={"status": "paused"}))
        return entry.state

    async def resume(self, room_id: str) -> MusicState:
        entry = self._rooms.get(room_id)
        if entry is None or entry.connection is None:
            logger.info("恢复音乐：房间没有活动连接 | room=%s", room_id)
            return self.get_state(room_id)
        try:
            await entry.connection.play()
        except Exception as e:
            self._record_error(room_id, entry, "恢复音乐失败", e)
        else:
            self._set_state(room_id, entry.state.model_copy(update={"status": "playing"}))
        return entry.state

    async def stop(self, room_id: str) -> MusicState:
        """关闭连接（尽力而为）并回到 ``idle``，清空 Prompt 与参数。"""
        entry = self._ensure(room_id)
        connection, entry.connection = entry.connection, None
        if connection is not None:
            await self._close_quietly(room_id, connection)
        self._set_state(room_id, MusicState())
        logger.info("音乐已停止 | room=%s", room_id)
        return entry.state

    async def update_prompts(self, room_id: str, prompts: list[WeightedPrompt]) -> MusicState:
        entry = self._rooms.get(room_id)
        if entry is None or entry.connection is None:
            logger.info("更新 Prompt：房间没有活动连接 | room=%s", room_id)
            return self.get_state(room_id)
        try:
            await entry.connection.set_prompts(prompts)
        except Exception as e:
            self._record_error(room_id, entry, "更新 Prompt 失败", e)
        else:
            self._set_state(room_id, entry.state.model_copy(update={"prompts": prompts}))
        return entry.state

    async def update_config(
        self, room_id: str, config: MusicConfig, reset_context: bool = False,
    ) -> MusicState:
        """更新生成参数；``reset_context`` 为真时让服务端丢弃已生成的上下文。"""
        entry = self._rooms.get(room_id)
        if entry is None or entry.connection is None:
            logger.info("更新参数：房间没有活动连接 | room=%s", room_id)
            return self.get_state(room_id)
        try:
            await entry.connection.set_config(config)
            if reset_context:
                logger.info("重置音乐上下文 | room=%s", room_id)
                await entry.connection.reset_context()
        except Exception as e:
            self._record_error(room_id, entry, "更新音乐参数失败", e)
        else:
            self._set_state(room_id, entry.state.model_copy(update={"config": config}))
        return entry.state

    async def shutdown(self) -> None:
        """关闭全部连接（应用关闭时调用）。"""
        for room_id, entry in list(self._rooms.items()):
            connection, entry.connection = entry.connection, None
            if connection is not None:
                await self._close_quietly(room_id, connection)
        self._audio.clear()
        self._state.clear()
        self._filtered.clear()

    # ── 订阅 ──────────────────────────────────────────────────────────

    def subscribe_audio(self, room_id: str, listener: Listener[str]) -> None:
        self._audio.subscribe(room_id, listener)
        logger.debug("音频订阅 | room=%s | listeners=%d", room_id, self._audio.listener_count(room_id))

    def unsubscribe_audio(self, room_id: str, listener: Listener[str]) -> None:
        self._audio.unsubscribe(room_id, listener)

    def subscribe_state(self, room_id: str, listener: Listener[MusicState]) -> None:
        self._state.subscribe(room_id, listener)

    def unsubscribe_state(self, room_id: str, listener: Listener[MusicState]) -> None:
        self._state.unsubscribe(room_id, listener)

    def subscribe_filtered(self, room_id: str, listener: Listener[str]) -> None:
        self._filtered.subscribe(room_id, listener)

    def unsubscribe_filtered(self, room_id: str, listener: Listener[str]) -> None:
        self._filtered.unsubscribe(room_id, listener)

    # ── 内部 ──────────────────────────────────────────────────────────

    def _ensure(self, room_id: str) -> _RoomMusic:
        entry = self._rooms.get(room_id)
        if entry is None:
            entry = self._rooms[room_id] = _RoomMusic()
        return entry

    def _set_state(self, room_id: str, state: MusicState) -> None:
        self._ensure(room_id).state = state
        self._state.publish(room_id, state)

    def _record_error(self, room_id: str, entry: _RoomMusic, action: str, e: Exception) -> None:
        logger.error("%s | room=%s | %s", action, room_id, e, exc_info=True)
        self._set_state(
            room_id,
            entry.state.model_copy(update={"status": "error", "error": _error_message(e)}),
        )

    async def _close_quietly(self, room_id: str, connection: MusicConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.error("关闭音乐连接失败 | room=%s | %s", room_id, e, exc_info=True)

    def _create_connection(self, room_id: str, entry: _RoomMusic) -> MusicConnection:
        """创建连接并绑定回调；连接被取代后，它的回调全部失效。"""
        connection: MusicConnection | None = None

        def is_current() -> bool:
            return connection is not None and entry.connection is connection

        def on_audio(data: bytes) -> None:
            if is_current():
                self._audio.publish(room_id, base64.b64encode(data).decode("ascii"))

        def on_filtered_prompt(text: str) -> None:
            if is_current():
                self._filtered.publish(room_id, text)

        def on_error(message: str) -> None:
            if not is_current():
                return
            logger.error("音乐连接出错 | room=%s | %s", room_id, message)
            self._set_state(
                room_id, entry.state.model_copy(update={"status": "error", "error": message}),
            )

        def on_close() -> None:
            if not is_current():
                return
            logger.info("音乐连接已关闭 | room=%s", room_id)
            entry.connection = None
            if entry.state.status != "error":
                self._set_state(room_id, entry.state.model_copy(update={"status": "stopped"}))

        connection = self.connection_factory(
            on_audio=on_audio,
            on_error=on_error,
            on_close=on_close,
            on_filtered_prompt=on_filtered_prompt,
        )
        return connection
