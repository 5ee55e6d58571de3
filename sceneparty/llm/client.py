"""
sceneparty.llm.client
~~~~~~~~~~~~~~~~~~~~~

Gemini API 客户端工厂 —— 全局共享的客户端创建入口。

Lyria 实时音乐只在 ``v1alpha`` 接口上提供，版本号从配置读取。
"""
from __future__ import annotations

from google import genai
from google.genai import types

from sceneparty.core.config import settings


def create_gemini_client(api_version: str | None = None) -> genai.Client:
    """创建 Gemini API 客户端实例。

    Args:
        api_version: 接口版本，默认读取 ``settings.MUSIC_API_VERSION``。

    Returns:
        已认证的 ``genai.Client``。
    """
    return genai.Client(
        api_key=settings.GEMINI_API_KEY,
        http_options=types.HttpOptions(api_version=api_version or settings.MUSIC_API_VERSION),
    )
