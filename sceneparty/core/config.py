"""
sceneparty.core.config
~~~~~~~~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Scene Party Backend", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── API Keys ──────────────────────────────────────────────────────
    GEMINI_API_KEY: str = Field(..., description="Google Gemini API Key（Lyria 实时音乐）")
    FAL_KEY: str = Field(default="", description="fal.ai API Key（图片 / 视频 / 合并 / 上传）")

    # ── 媒体生成管线 ──────────────────────────────────────────────────
    IMAGE_MODEL: str = Field(
        default="fal-ai/nano-banana-2/edit",
        description="场景合成使用的图片编辑模型",
    )
    IMAGE_ASPECT_RATIO: str = Field(default="16:9", description="合成图片宽高比")
    IMAGE_OUTPUT_FORMAT: str = Field(default="png", description="合成图片格式")
    IMAGE_RESOLUTION: str = Field(default="1K", description="合成图片分辨率")
    VIDEO_MODEL: str = Field(
        default="xai/grok-imagine-video/image-to-video",
        description="图生视频模型",
    )
    VIDEO_DURATION: int = Field(default=6, description="单段视频时长（秒）")
    VIDEO_RESOLUTION: str = Field(default="720p", description="单段视频分辨率")
    DEFAULT_VIDEO_PROMPT: str = Field(
        default="they both walk up the stairs slowly",
        description="未显式指定时使用的视频 Prompt",
    )
    MERGE_MODEL: str = Field(
        default="fal-ai/ffmpeg-api/merge-videos",
        description="视频拼接服务",
    )
    MERGE_RESOLUTION: str = Field(default="landscape_16_9", description="拼接输出画幅")
    DEFAULT_GENRE: str = Field(default="noir", description="默认场景风格（见 core.genres）")

    # ── 实时音乐 ──────────────────────────────────────────────────────
    MUSIC_MODEL: str = Field(
        default="models/lyria-realtime-exp",
        description="Lyria 实时音乐模型",
    )
    MUSIC_API_VERSION: str = Field(default="v1alpha", description="实时音乐接口版本")
    MUSIC_DEFAULT_TEMPERATURE: float = Field(default=1.0, description="未指定时的生成温度")
    MUSIC_SAMPLE_RATE: int = Field(default=48000, description="PCM 采样率（Hz）")
    MUSIC_CHANNELS: int = Field(default=2, description="PCM 声道数")

    # ── 推送通道 ──────────────────────────────────────────────────────
    WS_QUEUE_SIZE: int = Field(default=64, description="状态推送通道的缓冲队列长度")
    WS_AUDIO_QUEUE_SIZE: int = Field(default=512, description="音频推送通道的缓冲队列长度")
    ROOM_CHAT_HISTORY_LIMIT: int = Field(default=100, description="房间内保留的聊天条数")

    # ── 身份 ──────────────────────────────────────────────────────────
    USER_COOKIE_NAME: str = Field(default="sp-user", description="保存当前用户的 Cookie 名")

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=8000, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 先加载 .env.{env} 再加载 .env，前者优先级更高
    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_test(self) -> bool:
        """当前是否为测试环境。"""
        return self.ENVIRONMENT == "test"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """根据环境自动推断日志级别。

        - dev  → INFO
        - test → DEBUG（方便排查测试失败）
        - prod → WARNING（减少噪音）

        如果环境变量中显式设置了 LOG_LEVEL，会覆盖此默认推断。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()
