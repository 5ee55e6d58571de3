"""
sceneparty.services.push_channel
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 推送通道：把同步广播转成对单个客户端的有序异步发送。

广播器的监听器是同步调用的，不能在其中 ``await``。每条连接因此持有一个
有界队列：监听器只做 ``put_nowait``，由发送循环按顺序写出。队列满时
``put_nowait`` 抛出 ``QueueFull``，由广播器吞掉（丢弃该条消息）。
客户端断开时接收循环放入结束信号，发送循环读到后退出。

帧格式::

    {"event": "<事件名>", "data": <JSON>}
"""
from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from sceneparty.core.logging import get_logger

logger = get_logger(__name__)


def make_frame(event: str, data: Any) -> dict[str, Any]:
    return {"event": event, "data": jsonable_encoder(data)}


class PushChannel:
    """单个 WebSocket 连接的推送通道。

    Attributes:
        websocket: 已 ``accept`` 的连接。
        name: 通道名称，仅用于日志。
    """

    def __init__(self, websocket: WebSocket, name: str, maxsize: int) -> None:
        self.websocket = websocket
        self.name = name
        # None 为结束信号，由接收循环在断开时放入
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=maxsize)

    def push(self, event: str, data: Any) -> None:
        """同步入队一条事件，队列满时抛出 ``asyncio.QueueFull``。"""
        self._queue.put_nowait(make_frame(event, data))

    def listener(self, event: str) -> Callable[[Any], None]:
        """返回可注册到广播器上的监听器，收到的值以 ``event`` 事件推送。"""

        def _listener(value: Any) -> None:
            self.push(event, value)

        return _listener

    async def run(self) -> None:
        """并发运行接收与发送循环，直到客户端断开。"""
        await asyncio.gather(self._receive_loop(), self._send_loop())

    async def _receive_loop(self) -> None:
        # 客户端不会发业务消息，这里只用来感知断开
        try:
            while True:
                await self.websocket.receive_text()
        except WebSocketDisconnect:
            pass  # 正常断开
        except Exception as e:
            logger.warning("推送通道接收异常 | channel=%s | %s", self.name, e)
        finally:
            # 客户端已断开，未发送的帧直接丢弃，保证结束信号能入队
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(None)

    async def _send_loop(self) -> None:
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    break
                await self.websocket.send_json(frame)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.warning("推送通道发送异常 | channel=%s | %s", self.name, e)
