"""
sceneparty.services.music_connection
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

实时音乐生成连接的窄接口与 Lyria 实现。

``MusicSessionManager`` 只依赖 ``MusicConnection`` 暴露的几个动作和回调，
不关心底层厂商协议，测试时可以直接替换为假连接。
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from contextlib import AsyncExitStack
from typing import Any

from google import genai
from google.genai import types
from websockets.exceptions import ConnectionClosedOK

from sceneparty.core.config import settings
from sceneparty.core.logging import get_logger
from sceneparty.llm.client import create_gemini_client
from sceneparty.schemas.music import MusicConfig, WeightedPrompt

logger = get_logger(__name__)

AudioCallback = Callable[[bytes], None]
TextCallback = Callable[[str], None]
CloseCallback = Callable[[], None]


class MusicConnection(ABC):
    """一条实时音乐生成连接。

    回调在连接的接收循环中同步触发：
      - ``on_audio(pcm_bytes)``：收到一帧音频；
      - ``on_filtered_prompt(text)``：某个 Prompt 被服务端过滤；
      - ``on_error(message)``：连接出错；
      - ``on_close()``：连接关闭（每条连接最多一次）。
    """

    def __init__(
        self,
        on_audio: AudioCallback,
        on_error: TextCallback,
        on_close: CloseCallback,
        on_filtered_prompt: TextCallback | None = None,
    ) -> None:
        self.on_audio = on_audio
        self.on_error = on_error
        self.on_close = on_close
        self.on_filtered_prompt = on_filtered_prompt

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def set_prompts(self, prompts: list[WeightedPrompt]) -> None: ...

    @abstractmethod
    async def set_config(self, config: MusicConfig) -> None: ...

    @abstractmethod
    async def play(self) -> None: ...

    @abstractmethod
    async def pause(self) -> None: ...

    @abstractmethod
    async def reset_context(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...


ConnectionFactory = Callable[..., MusicConnection]


def build_generation_config(config: MusicConfig) -> types.LiveMusicGenerationConfig:
    """把 ``MusicConfig`` 转成 Lyria 的生成参数，未设置的字段交给服务端默认值。"""
    params: dict[str, Any] = {
        "temperature": (
            config.temperature
            if config.temperature is not None
            else settings.MUSIC_DEFAULT_TEMPERATURE
        ),
    }
    if config.bpm is not None:
        params["bpm"] = config.bpm
    if config.density is not None:
        params["density"] = config.density
    if config.brightness is not None:
        params["brightness"] = config.brightness
    if config.scale:
        params["scale"] = config.scale
    return types.LiveMusicGenerationConfig(**params)


class LyriaMusicConnection(MusicConnection):
    """基于 google-genai ``client.aio.live.music`` 的 Lyria 实时音乐连接。

    Attributes:
        model: 使用的音乐模型名称。
    """

    def __init__(
        self,
        on_audio: AudioCallback,
        on_error: TextCallback,
        on_close: CloseCallback,
        on_filtered_prompt: TextCallback | None = None,
        client: genai.Client | None = None,
        model: str | None = None,
    ) -> None:
        super().__init__(on_audio, on_error, on_close, on_filtered_prompt)
        self.model: str = model or settings.MUSIC_MODEL
        self._client: genai.Client = client or create_gemini_client()
        self._stack: AsyncExitStack | None = None
        self._session: Any = None
        self._receiver: asyncio.Task[None] | None = None
        self._closed = False
        self._chunk_count = 0

    async def connect(self) -> None:
        stack = AsyncExitStack()
        self._stack = stack
        session = await stack.enter_async_context(
            self._client.aio.live.music.connect(model=self.model),
        )
        if self._closed:
            # 握手期间已被 close，释放刚建立的会话
            logger.info("Lyria 连接在握手期间被关闭，释放会话 | model=%s", self.model)
            self._stack = None
            await stack.aclose()
            return
        self._session = session
        self._receiver = asyncio.create_task(self._receive_loop(), name="lyria-receive")
        logger.info("Lyria 连接已建立 | model=%s", self.model)

    async def set_prompts(self, prompts: list[WeightedPrompt]) -> None:
        await self._require_session().set_weighted_prompts(
            prompts=[types.WeightedPrompt(text=p.text, weight=p.weight) for p in prompts],
        )

    async def set_config(self, config: MusicConfig) -> None:
        await self._require_session().set_music_generation_config(
            config=build_generation_config(config),
        )

    async def play(self) -> None:
        await self._require_session().play()

    async def pause(self) -> None:
        await self._require_session().pause()

    async def reset_context(self) -> None:
        await self._require_session().reset_context()

    async def close(self) -> None:
        if self._receiver is not None:
            self._receiver.cancel()
            await asyncio.gather(self._receiver, return_exceptions=True)
            self._receiver = None
        if self._stack is not None:
            stack, self._stack = self._stack, None
            await stack.aclose()
        self._session = None
        self._notify_closed()

    # ── 内部 ──────────────────────────────────────────────────────────

    def _require_session(self) -> Any:
        if self._session is None:
            raise RuntimeError("音乐会话尚未连接")
        return self._session

    async def _receive_loop(self) -> None:
        try:
            async for message in self._session.receive():
                self._dispatch(message)
        except asyncio.CancelledError:
            raise
        except ConnectionClosedOK:
            logger.info("Lyria 连接被服务端正常关闭 | chunks=%d", self._chunk_count)
        except Exception as e:
            logger.error("Lyria 接收异常: %s", e, exc_info=True)
            self.on_error(str(e) or e.__class__.__name__)

        # 服务端结束了会话：退出连接上下文，之后的 close() 不再重复释放
        self._receiver = None
        if self._stack is not None:
            stack, self._stack = self._stack, None
            try:
                await stack.aclose()
            except Exception as e:
                logger.warning("释放 Lyria 会话失败: %s", e)
        self._notify_closed()

    def _dispatch(self, message: types.LiveMusicServerMessage) -> None:
        if message.filtered_prompt is not None:
            text = message.filtered_prompt.text or ""
            logger.warning("Prompt 被过滤 | %s | reason=%s", text, message.filtered_prompt.filtered_reason)
            if self.on_filtered_prompt is not None:
                self.on_filtered_prompt(text)

        content = message.server_content
        if content is None or not content.audio_chunks:
            return
        for chunk in content.audio_chunks:
            if not chunk.data:
                continue
            self._chunk_count += 1
            if self._chunk_count <= 3 or self._chunk_count % 100 == 0:
                logger.debug("收到音频帧 #%d | size=%d bytes", self._chunk_count, len(chunk.data))
            self.on_audio(chunk.data)

    def _notify_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.on_close()
