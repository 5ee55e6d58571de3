"""
sceneparty.core.genres
~~~~~~~~~~~~~~~~~~~~~~

场景风格（Genre）目录。

每个风格对应一组固定的背景场景图，生成管线会为每个场景各跑一条
"合成图片 → 生成视频" 的流水线，最终按场景顺序拼接成片。
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class Genre(BaseModel):
    id: str = Field(..., description="风格唯一标识")
    name: str = Field(..., description="显示名称")
    scenes: list[str] = Field(..., min_length=1, description="按顺序排列的背景场景图 URL")


GENRES: list[Genre] = [
    Genre(
        id="noir",
        name="Noir",
        scenes=[
            "https://pocge3esja6nk0zk.public.blob.vercel-storage.com/BF0LFr1_xVCIhqE2wiNQq_CweiVRCC-cRjLFz1yMmeqKO7HvhGw5Rs3aPsdjq.png",
            "https://v3b.fal.media/files/b/0a904ff6/zh54kzzHSHF5K9G1LlTVb_nY4Pvu3d.png",
        ],
    ),
]


def get_genre(genre_id: str) -> Genre | None:
    """按 ID 查找风格，找不到返回 ``None``。"""
    return next((g for g in GENRES if g.id == genre_id), None)
