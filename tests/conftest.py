"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures：用假实现替换所有外部服务（fal.ai 媒体、Lyria 音乐），
使测试可在无网络环境下快速运行。
"""
from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Callable, Iterator
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("GEMINI_API_KEY", "test-fake-key")
os.environ.setdefault("FAL_KEY", "test-fake-fal-key")
os.environ.setdefault("ENVIRONMENT", "test")  # 激活 .env.test 配置

from fastapi.testclient import TestClient  # noqa: E402

from sceneparty.core.identity import TEST_USERS, User, encode_user_cookie  # noqa: E402
from sceneparty.main import create_app  # noqa: E402
from sceneparty.schemas.music import MusicConfig, WeightedPrompt  # noqa: E402
from sceneparty.services.app_services import AppServices  # noqa: E402
from sceneparty.services.music_connection import MusicConnection  # noqa: E402

ALICE: User = TEST_USERS[0]
BOB: User = TEST_USERS[1]

SCENE_A = "https://scenes.test/a.png"
SCENE_B = "https://scenes.test/b.png"
MERGED_URL = "https://media.test/merged.mp4"


# ── 媒体服务 ──────────────────────────────────────────────────────────

class FakeMediaService:
    """按输入确定性地返回 URL 的媒体服务。

    - ``image_gates`` / ``video_gates``：按场景 / 图片 URL 挂起调用，直到事件被 set；
    - ``failing_images`` / ``empty_images``：这些场景抛异常 / 返回空结果；
    - ``failing_videos``、``merge_result`` 同理。
    """

    def __init__(self) -> None:
        self.compose_calls: list[tuple[str, list[str]]] = []
        self.animate_calls: list[tuple[str, str]] = []
        self.merge_calls: list[list[str]] = []
        self.uploads: list[tuple[bytes, str, str | None]] = []
        self.image_gates: dict[str, asyncio.Event] = {}
        self.video_gates: dict[str, asyncio.Event] = {}
        self.merge_gate: asyncio.Event | None = None
        self.failing_images: set[str] = set()
        self.empty_images: set[str] = set()
        self.failing_videos: set[str] = set()
        self.merge_result: str | None = MERGED_URL

    async def compose_image(self, prompt: str, image_urls: list[str]) -> str | None:
        self.compose_calls.append((prompt, image_urls))
        scene = image_urls[-1]
        if scene in self.image_gates:
            await self.image_gates[scene].wait()
        if scene in self.failing_images:
            raise RuntimeError(f"compose failed for {scene}")
        if scene in self.empty_images:
            return None
        return f"{scene}#image"

    async def animate_image(self, prompt: str, image_url: str) -> str | None:
        self.animate_calls.append((prompt, image_url))
        if image_url in self.video_gates:
            await self.video_gates[image_url].wait()
        if image_url in self.failing_videos:
            raise RuntimeError(f"animate failed for {image_url}")
        return f"{image_url}#video"

    async def merge_videos(self, video_urls: list[str]) -> str | None:
        self.merge_calls.append(video_urls)
        if self.merge_gate is not None:
            await self.merge_gate.wait()
        return self.merge_result

    async def upload(self, data: bytes, content_type: str, file_name: str | None = None) -> str:
        self.uploads.append((data, content_type, file_name))
        return f"https://uploads.test/{len(self.uploads)}/{file_name or 'file'}"


# ── 音乐连接 ──────────────────────────────────────────────────────────

class FakeMusicConnection(MusicConnection):
    """记录调用的假音乐连接，可按方法名注入失败。

    ``connect_gate`` 不为空时 ``connect()`` 挂起到事件被 set；握手期间的
    ``close()`` 不会中断握手，握手完成后会话仍然是活的（``live``）。
    """

    def __init__(
        self,
        on_audio: Callable[[bytes], None],
        on_error: Callable[[str], None],
        on_close: Callable[[], None],
        on_filtered_prompt: Callable[[str], None] | None = None,
        fail_on: set[str] | None = None,
        connect_gate: asyncio.Event | None = None,
    ) -> None:
        super().__init__(on_audio, on_error, on_close, on_filtered_prompt)
        self.fail_on = fail_on or set()
        self.connect_gate = connect_gate
        self.calls: list[tuple[str, Any]] = []
        self.closed = False
        self.live = False

    async def _record(self, name: str, arg: Any = None) -> None:
        self.calls.append((name, arg))
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    async def connect(self) -> None:
        await self._record("connect")
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        self.live = True

    async def set_prompts(self, prompts: list[WeightedPrompt]) -> None:
        await self._record("set_prompts", prompts)

    async def set_config(self, config: MusicConfig) -> None:
        await self._record("set_config", config)

    async def play(self) -> None:
        await self._record("play")

    async def pause(self) -> None:
        await self._record("pause")

    async def reset_context(self) -> None:
        await self._record("reset_context")

    async def close(self) -> None:
        self.closed = True
        self.live = False
        await self._record("close")

    @property
    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


class FakeMusicFactory:
    """``MusicSessionManager`` 使用的连接工厂，记录创建过的所有连接。"""

    def __init__(self) -> None:
        self.connections: list[FakeMusicConnection] = []
        self.fail_on: set[str] = set()
        self.connect_gate: asyncio.Event | None = None

    def __call__(self, **callbacks: Any) -> FakeMusicConnection:
        connection = FakeMusicConnection(
            fail_on=set(self.fail_on), connect_gate=self.connect_gate, **callbacks,
        )
        self.connections.append(connection)
        return connection

    @property
    def latest(self) -> FakeMusicConnection:
        return self.connections[-1]


# ── 工具函数 ──────────────────────────────────────────────────────────

async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """轮询事件循环直到条件成立，超时则让测试失败。"""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("等待条件超时")
        await asyncio.sleep(0.001)


def login_as(client: TestClient, user: User) -> None:
    """把身份 Cookie 切换为 ``user``。"""
    client.cookies.clear()
    client.cookies.set("sp-user", encode_user_cookie(user))


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest.fixture()
def fake_media() -> FakeMediaService:
    return FakeMediaService()


@pytest.fixture()
def music_factory() -> FakeMusicFactory:
    return FakeMusicFactory()


@pytest.fixture()
def services(fake_media: FakeMediaService, music_factory: FakeMusicFactory) -> AppServices:
    return AppServices(media=fake_media, music_connection_factory=music_factory)  # type: ignore[arg-type]


@pytest.fixture()
def client(fake_media: FakeMediaService, music_factory: FakeMusicFactory) -> Iterator[TestClient]:
    """带完整生命周期的 TestClient，外部服务全部替换为假实现。"""
    app = create_app(
        lambda: AppServices(media=fake_media, music_connection_factory=music_factory),  # type: ignore[arg-type]
    )
    with TestClient(app) as test_client:
        yield test_client
