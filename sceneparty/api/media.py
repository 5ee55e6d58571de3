"""
sceneparty.api.media
~~~~~~~~~~~~~~~~~~~~

单用户媒体接口，不依赖房间，直接调用媒体服务。

端点:
  - ``POST /generate`` → 上传角色 / 服装图，与场景图合成一张图片
  - ``POST /animate``  → 图片生成视频
  - ``POST /merge``    → 按顺序拼接多段视频
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from sceneparty.api.deps import get_services
from sceneparty.core.config import settings
from sceneparty.core.logging import get_logger
from sceneparty.prompts.scene import resolve_image_prompt, resolve_video_prompt
from sceneparty.schemas.api_response import ApiResponse
from sceneparty.schemas.media import AnimateRequest, ImageResult, MergeRequest, VideoResult
from sceneparty.services.app_services import AppServices

logger = get_logger(__name__)

router: APIRouter = APIRouter()


async def _upload_all(services: AppServices, files: list[UploadFile]) -> list[str]:
    async def upload(file: UploadFile) -> str:
        data = await file.read()
        return await services.media.upload(
            data, file.content_type or "application/octet-stream", file_name=file.filename,
        )

    return list(await asyncio.gather(*(upload(f) for f in files)))


@router.post("/generate", summary="合成场景图片")
async def generate_image(
    images: list[UploadFile] | None = File(default=None, description="角色图片（至少一张）"),
    outfits: list[UploadFile] | None = File(default=None, description="服装图片"),
    scene_image_url: str | None = Form(default=None, description="背景场景图 URL"),
    prompt: str | None = Form(default=None, description="自定义合成 Prompt"),
    services: AppServices = Depends(get_services),
) -> ApiResponse[ImageResult]:
    """角色图、服装图、场景图依次作为输入，未给 Prompt 时按数量推导默认措辞。"""
    images = images or []
    outfits = outfits or []
    if not images:
        raise HTTPException(status_code=400, detail="至少需要一张角色图片")
    if not scene_image_url:
        raise HTTPException(status_code=400, detail="缺少场景图 URL")

    resolved = resolve_image_prompt(prompt, len(images), len(outfits))
    logger.info(
        "单图合成 | characters=%d | outfits=%d | prompt=%s", len(images), len(outfits), resolved,
    )
    try:
        character_urls = await _upload_all(services, images)
        outfit_urls = await _upload_all(services, outfits)
        image_url = await services.media.compose_image(
            resolved, [*character_urls, *outfit_urls, scene_image_url],
        )
    except Exception as e:
        logger.error("单图合成失败: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="图片生成失败") from e
    if not image_url:
        raise HTTPException(status_code=500, detail="图片生成失败")
    return ApiResponse.ok(data=ImageResult(image_url=image_url))


@router.post("/animate", summary="图片生成视频")
async def animate_image(
    body: AnimateRequest, services: AppServices = Depends(get_services),
) -> ApiResponse[VideoResult]:
    prompt = resolve_video_prompt(body.prompt, settings.DEFAULT_VIDEO_PROMPT)
    try:
        video_url = await services.media.animate_image(prompt, body.image_url)
    except Exception as e:
        logger.error("视频生成失败: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="视频生成失败") from e
    if not video_url:
        raise HTTPException(status_code=500, detail="视频生成失败")
    return ApiResponse.ok(data=VideoResult(video_url=video_url))


@router.post("/merge", summary="拼接视频")
async def merge_videos(
    body: MergeRequest, services: AppServices = Depends(get_services),
) -> ApiResponse[VideoResult]:
    if len(body.video_urls) < 2:
        raise HTTPException(status_code=400, detail="至少需要两段视频")
    try:
        video_url = await services.media.merge_videos(body.video_urls)
    except Exception as e:
        logger.error("视频拼接失败: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="视频拼接失败") from e
    if not video_url:
        raise HTTPException(status_code=500, detail="视频拼接失败")
    return ApiResponse.ok(data=VideoResult(video_url=video_url))
