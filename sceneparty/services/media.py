"""
sceneparty.services.media
~~~~~~~~~~~~~~~~~~~~~~~~~

生成式媒体服务封装：只负责与 fal.ai 的连接和调用。

提供四个能力：场景图片合成、图生视频、视频拼接、素材上传。
合成 / 视频 / 拼接在服务没有返回可用结果时返回 ``None``，
网络或服务异常直接向上抛出，由生成管线统一处理。
"""
from __future__ import annotations

from typing import Any

import fal_client

from sceneparty.core.config import settings
from sceneparty.core.logging import get_logger

logger = get_logger(__name__)


def create_fal_client() -> fal_client.AsyncClient:
    """创建 fal.ai 异步客户端实例。

    Returns:
        已认证的 ``fal_client.AsyncClient``。
    """
    return fal_client.AsyncClient(key=settings.FAL_KEY or None)


def _first_image_url(result: Any) -> str | None:
    images = (result or {}).get("images") or []
    return images[0].get("url") if images else None


def _video_url(result: Any) -> str | None:
    return ((result or {}).get("video") or {}).get("url")


class MediaService:
    """fal.ai 媒体服务封装。

    Attributes:
        image_model: 场景合成模型。
        video_model: 图生视频模型。
        merge_model: 视频拼接服务。
    """

    def __init__(self, client: fal_client.AsyncClient | None = None) -> None:
        """初始化媒体服务。

        Args:
            client: 可选的 ``fal_client.AsyncClient`` 实例（用于测试注入 mock）。
        """
        self._client = client or create_fal_client()
        self.image_model: str = settings.IMAGE_MODEL
        self.video_model: str = settings.VIDEO_MODEL
        self.merge_model: str = settings.MERGE_MODEL

    async def compose_image(self, prompt: str, image_urls: list[str]) -> str | None:
        """把角色 / 服装 / 场景图合成为一张场景图片。

        Args:
            prompt: 合成 Prompt。
            image_urls: 按顺序排列的输入图片（角色、服装、最后是场景）。

        Returns:
            合成图片 URL，服务未返回图片时为 ``None``。
        """
        logger.debug("场景合成请求 | model=%s | inputs=%d", self.image_model, len(image_urls))
        result = await self._client.subscribe(
            self.image_model,
            arguments={
                "prompt": prompt,
                "image_urls": image_urls,
                "aspect_ratio": settings.IMAGE_ASPECT_RATIO,
                "output_format": settings.IMAGE_OUTPUT_FORMAT,
                "resolution": settings.IMAGE_RESOLUTION,
            },
        )
        return _first_image_url(result)

    async def animate_image(self, prompt: str, image_url: str) -> str | None:
        """把单张图片生成为一段视频。"""
        logger.debug("视频生成请求 | model=%s | image=%s", self.video_model, image_url)
        result = await self._client.subscribe(
            self.video_model,
            arguments={
                "prompt": prompt,
                "image_url": image_url,
                "duration": settings.VIDEO_DURATION,
                "resolution": settings.VIDEO_RESOLUTION,
            },
        )
        return _video_url(result)

    async def merge_videos(self, video_urls: list[str]) -> str | None:
        """按给定顺序拼接多段视频。"""
        logger.debug("视频拼接请求 | model=%s | videos=%d", self.merge_model, len(video_urls))
        result = await self._client.subscribe(
            self.merge_model,
            arguments={
                "video_urls": video_urls,
                "resolution": settings.MERGE_RESOLUTION,
            },
        )
        return _video_url(result)

    async def upload(self, data: bytes, content_type: str, file_name: str | None = None) -> str:
        """上传素材图片，返回可公开访问的 URL。"""
        url: str = await self._client.upload(data, content_type, file_name=file_name)
        logger.info("素材已上传 | size=%d bytes | url=%s", len(data), url)
        return url
