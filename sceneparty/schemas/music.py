"""
sceneparty.schemas.music
~~~~~~~~~~~~~~~~~~~~~~~~

房间背景音乐的 Pydantic 模型。
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

MusicStatus = Literal["idle", "connecting", "playing", "paused", "stopped", "error"]
MusicAction = Literal["play", "pause", "resume", "stop", "set_prompts", "set_config"]


class WeightedPrompt(BaseModel):
    text: str = Field(..., min_length=1, description="风格描述")
    weight: float = Field(default=1.0, description="权重")


class MusicConfig(BaseModel):
    """音乐生成参数，未设置的字段交给服务端默认值。"""

    bpm: int | None = Field(default=None, ge=60, le=200, description="节拍")
    temperature: float | None = Field(default=None, ge=0.0, le=3.0, description="生成温度")
    density: float | None = Field(default=None, ge=0.0, le=1.0, description="音符密度")
    brightness: float | None = Field(default=None, ge=0.0, le=1.0, description="音色明亮度")
    scale: str | None = Field(default=None, description="调式，如 C_MAJOR_A_MINOR")


class MusicState(BaseModel):
    """某个房间的音乐状态。"""

    status: MusicStatus = "idle"
    prompts: list[WeightedPrompt] = Field(default_factory=list)
    config: MusicConfig = Field(default_factory=MusicConfig)
    error: str | None = None


class MusicFormat(BaseModel):
    """音频帧格式，推送通道建立时下发给播放端。"""

    encoding: Literal["pcm16"] = "pcm16"
    sample_rate_hz: int
    channels: int


class MusicCommand(BaseModel):
    """``POST /rooms/{id}/music`` 的请求体。"""

    action: MusicAction
    prompts: list[WeightedPrompt] | None = None
    config: MusicConfig | None = None
    reset_context: bool = False
