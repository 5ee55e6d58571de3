"""
sceneparty.schemas.media
~~~~~~~~~~~~~~~~~~~~~~~~

单用户媒体接口（合成 / 图生视频 / 拼接）的请求与结果模型。
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class AnimateRequest(BaseModel):
    image_url: str = Field(..., min_length=1, description="要生成视频的图片 URL")
    prompt: str | None = Field(default=None, description="自定义视频 Prompt")


class MergeRequest(BaseModel):
    video_urls: list[str] = Field(..., description="按顺序拼接的视频 URL，至少两段")


class ImageResult(BaseModel):
    image_url: str = Field(..., description="合成后的图片 URL")


class VideoResult(BaseModel):
    video_url: str = Field(..., description="生成或拼接后的视频 URL")
