"""
tests.test_push_channel
~~~~~~~~~~~~~~~~~~~~~~~

PushChannel 单元测试：用假的 WebSocket 驱动接收与发送循环。
"""
from __future__ import annotations

import asyncio
from typing import Any

import pytest
from fastapi import WebSocketDisconnect

from conftest import wait_until
from sceneparty.services.push_channel import PushChannel, make_frame


class FakeWebSocket:
    """``receive_text`` 挂起到 ``disconnect`` 被 set，然后抛出 ``WebSocketDisconnect``。"""

    def __init__(self, fail_send: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.disconnect = asyncio.Event()
        self.fail_send = fail_send

    async def receive_text(self) -> str:
        await self.disconnect.wait()
        raise WebSocketDisconnect(code=1000)

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.fail_send:
            raise RuntimeError("socket gone")
        self.sent.append(data)


def test_make_frame_encodes_models() -> None:
    frame = make_frame("update", {"ids": ("a", "b")})
    assert frame == {"event": "update", "data": {"ids": ["a", "b"]}}


class TestPushChannel:
    """测试推送顺序与断开后的退出。"""

    @pytest.mark.asyncio
    async def test_frames_sent_in_order_and_run_returns_on_disconnect(self) -> None:
        websocket = FakeWebSocket()
        channel = PushChannel(websocket, "test", maxsize=8)  # type: ignore[arg-type]
        channel.push("update", 1)
        listener = channel.listener("update")

        running = asyncio.create_task(channel.run())
        await wait_until(lambda: len(websocket.sent) == 1)
        listener(2)
        await wait_until(lambda: len(websocket.sent) == 2)
        websocket.disconnect.set()

        await asyncio.wait_for(running, timeout=1.0)
        assert [f["data"] for f in websocket.sent] == [1, 2]

    @pytest.mark.asyncio
    async def test_run_returns_when_disconnected_with_full_queue(self) -> None:
        websocket = FakeWebSocket()
        websocket.disconnect.set()
        channel = PushChannel(websocket, "test", maxsize=2)  # type: ignore[arg-type]
        channel.push("update", 1)
        channel.push("update", 2)

        with pytest.raises(asyncio.QueueFull):
            channel.push("update", 3)

        await asyncio.wait_for(channel.run(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_send_failure_ends_after_disconnect(self) -> None:
        websocket = FakeWebSocket(fail_send=True)
        channel = PushChannel(websocket, "test", maxsize=8)  # type: ignore[arg-type]
        channel.push("update", 1)

        running = asyncio.create_task(channel.run())
        await asyncio.sleep(0.01)
        assert not running.done()
        websocket.disconnect.set()

        await asyncio.wait_for(running, timeout=1.0)
        assert websocket.sent == []
