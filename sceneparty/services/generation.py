"""
sceneparty.services.generation
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

生成管线编排：为一个房间驱动 "场景合成 → 图生视频 → 拼接" 三阶段任务。

阶段状态机::

    (无) --start--> generating-images --全部成功--> generating-videos --全部成功--> merging --成功--> done
                          任一失败 ---------------------------------------------------------> error
    (done|error) --start--> generating-images
    (任意) --reset--> (无)

- ``start()`` 只做准入判断并同步写入初始状态，真正的工作在后台任务中执行，
  调用方不会等待任务完成；
- 所有进度只通过 ``RoomRegistry`` 的修改操作对外发布；
- 同一阶段内各场景并发执行，全部结束后才进入下一阶段；
- ``reset()`` 不会中断进行中的外部调用，只是让旧任务此后的写入全部失效
  （按 ``run_id`` 识别），旧任务也不会再把生成状态"复活"。
"""
from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable
from typing import Any, Literal, TypeVar

from sceneparty.core.config import settings
from sceneparty.core.genres import get_genre
from sceneparty.core.logging import get_logger
from sceneparty.prompts.scene import resolve_image_prompt, resolve_video_prompt
from sceneparty.schemas.rooms import GenerationStage, PipelineStatus, RoomGeneration
from sceneparty.services.media import MediaService
from sceneparty.services.room_registry import RoomRegistry

logger = get_logger(__name__)

T = TypeVar("T")

StartResult = Literal["accepted", "not_found", "no_characters", "in_progress", "unknown_genre"]


class GenerationError(Exception):
    """外部服务没有返回可用结果。"""


class RunDetached(Exception):
    """生成任务已被重置或被新任务取代，后续结果不再写回。"""


async def _settle_all(coros: list[Awaitable[T]]) -> list[T]:
    """并发执行一个阶段内的全部调用，等全部结束后再判断成败。

    已完成场景的进度在此之前已经各自写回，失败时抛出第一个异常。
    """
    results = await asyncio.gather(*coros, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


class GenerationPipeline:
    """房间生成任务编排器。

    Attributes:
        registry: 房间注册表，所有进度都通过它写回。
        media: 媒体服务（合成 / 视频 / 拼接）。
    """

    def __init__(
        self,
        registry: RoomRegistry,
        media: MediaService,
        default_genre: str | None = None,
        default_video_prompt: str | None = None,
    ) -> None:
        self.registry = registry
        self.media = media
        self.default_genre: str = default_genre or settings.DEFAULT_GENRE
        self.default_video_prompt: str = default_video_prompt or settings.DEFAULT_VIDEO_PROMPT
        # 持有后台任务的强引用，防止被垃圾回收
        self._tasks: set[asyncio.Task[None]] = set()

    # ── 对外接口 ──────────────────────────────────────────────────────

    def start(
        self,
        room_id: str,
        image_prompt: str | None = None,
        video_prompt: str | None = None,
        genre_id: str | None = None,
        scenes: list[str] | None = None,
    ) -> StartResult:
        """准入检查通过后写入初始状态并在后台启动任务。

        必须在事件循环中调用。

        Args:
            room_id: 房间 ID。
            image_prompt: 自定义合成 Prompt，为空时按素材数量推导。
            video_prompt: 自定义视频 Prompt，为空时使用默认值。
            genre_id: 场景风格，为空时使用默认风格。
            scenes: 直接指定的背景场景图（优先于 ``genre_id``）。

        Returns:
            ``accepted`` 表示已受理；其余值说明拒绝原因。
        """
        room = self.registry.get_room(room_id)
        if room is None:
            return "not_found"
        if not room.characters:
            return "no_characters"
        if room.generation is not None and not room.generation.is_terminal:
            return "in_progress"

        if not scenes:
            genre = get_genre(genre_id or self.default_genre)
            if genre is None:
                return "unknown_genre"
            scenes = genre.scenes

        run_id = uuid.uuid4().hex[:8]
        character_urls = [c.image_url for c in room.characters]
        outfit_urls = [o.image_url for o in room.outfits]

        self.registry.set_generation(
            room_id,
            RoomGeneration(
                run_id=run_id,
                stage="generating-images",
                pipelines=[PipelineStatus() for _ in scenes],
            ),
        )
        logger.info(
            "生成任务已受理 | room=%s | run=%s | scenes=%d | characters=%d | outfits=%d",
            room_id, run_id, len(scenes), len(character_urls), len(outfit_urls),
        )

        task = asyncio.create_task(
            self._supervise(
                room_id,
                run_id,
                list(scenes),
                character_urls,
                outfit_urls,
                image_prompt,
                video_prompt,
            ),
            name=f"generation-{room_id}-{run_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return "accepted"

    def reset(self, room_id: str) -> bool:
        """清空房间的生成状态。进行中的任务不会被中断，但其结果不再写回。"""
        if not self.registry.room_exists(room_id):
            return False
        self.registry.set_generation(room_id, None)
        logger.info("生成状态已重置 | room=%s", room_id)
        return True

    async def shutdown(self) -> None:
        """取消所有仍在运行的后台任务（应用关闭时调用）。"""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("已取消 %d 个生成任务", len(tasks))

    @property
    def running_count(self) -> int:
        """仍在运行的后台任务数。"""
        return len(self._tasks)

    # ── 后台任务 ──────────────────────────────────────────────────────

    async def _supervise(self, room_id: str, run_id: str, *args: Any) -> None:
        """后台任务的错误边界：任何失败都保证写入 error 终态。"""
        try:
            await self._run(room_id, run_id, *args)
        except RunDetached:
            logger.info("生成任务已脱离房间，丢弃后续结果 | room=%s | run=%s", room_id, run_id)
        except asyncio.CancelledError:
            logger.info("生成任务被取消 | room=%s | run=%s", room_id, run_id)
            raise
        except Exception as e:
            logger.error("生成任务失败 | room=%s | run=%s | %s", room_id, run_id, e, exc_info=True)
            self._fail(room_id, run_id, str(e) or "生成失败")

    async def _run(
        self,
        room_id: str,
        run_id: str,
        scenes: list[str],
        character_urls: list[str],
        outfit_urls: list[str],
        image_prompt: str | None,
        video_prompt: str | None,
    ) -> None:
        prompt = resolve_image_prompt(image_prompt, len(character_urls), len(outfit_urls))
        motion_prompt = resolve_video_prompt(video_prompt, self.default_video_prompt)

        # 阶段 1: 场景合成
        async def compose(index: int, scene_url: str) -> str:
            url = await self.media.compose_image(prompt, [*character_urls, *outfit_urls, scene_url])
            if not url:
                raise GenerationError(f"场景 {index + 1} 未返回图片")
            self.registry.update_pipeline(
                room_id, index, {"image_done": True, "image_url": url}, run_id=run_id,
            )
            return url

        image_urls = await _settle_all([compose(i, s) for i, s in enumerate(scenes)])
        logger.info("场景图片全部完成 | room=%s | run=%s", room_id, run_id)
        self._transition(room_id, run_id, "generating-videos")

        # 阶段 2: 图生视频
        async def animate(index: int, image_url: str) -> str:
            url = await self.media.animate_image(motion_prompt, image_url)
            if not url:
                raise GenerationError(f"场景 {index + 1} 未返回视频")
            self.registry.update_pipeline(
                room_id, index, {"video_done": True, "video_url": url}, run_id=run_id,
            )
            return url

        video_urls = await _settle_all([animate(i, u) for i, u in enumerate(image_urls)])
        logger.info("场景视频全部完成 | room=%s | run=%s", room_id, run_id)
        self._transition(room_id, run_id, "merging")

        # 阶段 3: 按场景顺序拼接
        merged_url = await self.media.merge_videos(video_urls)
        if not merged_url:
            raise GenerationError("拼接服务未返回视频")
        self._transition(room_id, run_id, "done", merged_video_url=merged_url)
        logger.info("生成任务完成 | room=%s | run=%s | url=%s", room_id, run_id, merged_url)

    # ── 状态写回 ──────────────────────────────────────────────────────

    def _current(self, room_id: str, run_id: str) -> RoomGeneration | None:
        """返回仍归属于 ``run_id`` 的生成状态，已脱离则返回 ``None``。"""
        room = self.registry.get_room(room_id)
        if room is None or room.generation is None or room.generation.run_id != run_id:
            return None
        return room.generation

    def _transition(self, room_id: str, run_id: str, stage: GenerationStage, **fields: Any) -> None:
        current = self._current(room_id, run_id)
        if current is None:
            raise RunDetached(run_id)
        self.registry.set_generation(
            room_id,
            RoomGeneration(run_id=run_id, stage=stage, pipelines=current.pipelines, **fields),
        )

    def _fail(self, room_id: str, run_id: str, message: str) -> None:
        current = self._current(room_id, run_id)
        if current is None:
            return
        self.registry.set_generation(
            room_id,
            RoomGeneration(run_id=run_id, stage="error", pipelines=current.pipelines, error=message),
        )
