"""
sceneparty.services.app_services
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

应用级服务容器：在 FastAPI lifespan 中创建并挂载到 ``app.state.services``。

所有内存注册表都是这个对象的实例状态，不使用模块级全局变量。
"""
from __future__ import annotations

from sceneparty.core.config import settings
from sceneparty.core.logging import get_logger
from sceneparty.services.friends import FriendService
from sceneparty.services.generation import GenerationPipeline
from sceneparty.services.media import MediaService
from sceneparty.services.music_connection import ConnectionFactory, LyriaMusicConnection
from sceneparty.services.music_session import MusicSessionManager
from sceneparty.services.notifications import NotificationService
from sceneparty.services.room_registry import RoomRegistry

logger = get_logger(__name__)


class AppServices:
    """房间、生成、好友、通知、音乐等服务的持有者。

    Attributes:
        rooms: 房间注册表。
        media: fal.ai 媒体服务。
        generation: 生成管线编排器。
        friends: 好友服务。
        notifications: 通知服务。
        music: 背景音乐会话管理。
    """

    def __init__(
        self,
        media: MediaService | None = None,
        music_connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self.rooms = RoomRegistry(chat_history_limit=settings.ROOM_CHAT_HISTORY_LIMIT)
        self.media = media or MediaService()
        self.generation = GenerationPipeline(self.rooms, self.media)
        self.friends = FriendService()
        self.notifications = NotificationService()
        self.music = MusicSessionManager(music_connection_factory or LyriaMusicConnection)

    async def shutdown(self) -> None:
        """取消后台生成任务、关闭音乐连接并清空所有订阅。"""
        await self.generation.shutdown()
        await self.music.shutdown()
        self.rooms.close()
        self.friends.close()
        self.notifications.close()
        logger.info("应用服务已关闭")
