"""
sceneparty.services.publisher
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

通用的按 key 分组的订阅 / 广播器。

房间状态、好友、通知、音乐状态和音频帧共用同一个实现，
key 为房间 ID 或用户 ID。

约定:
  - ``publish`` 同步调用当下已注册的所有监听器（按注册顺序），不排队、不回放；
  - 监听器抛出的异常会被吞掉，不影响其他监听器，也不会传回触发广播的业务操作；
  - 推送端点在订阅之前必须先自行下发一次当前完整状态，保证后加入的客户端有基线。
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

from sceneparty.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]


class Publisher(Generic[T]):
    """按 key 管理监听器集合并广播值。

    Attributes:
        name: 广播器名称，仅用于日志。
    """

    def __init__(self, name: str) -> None:
        self.name = name
        # dict 充当有序集合：保持注册顺序，且同一监听器只出现一次
        self._listeners: dict[str, dict[Listener[T], None]] = {}

    def subscribe(self, key: str, listener: Listener[T]) -> None:
        """注册监听器，重复注册无副作用。"""
        self._listeners.setdefault(key, {})[listener] = None

    def unsubscribe(self, key: str, listener: Listener[T]) -> None:
        """移除监听器，未注册时无副作用。"""
        listeners = self._listeners.get(key)
        if listeners is None:
            return
        listeners.pop(listener, None)
        if not listeners:
            del self._listeners[key]

    def publish(self, key: str, value: T) -> int:
        """把 ``value`` 同步投递给 ``key`` 下的所有监听器。

        Returns:
            成功投递的监听器数量。
        """
        # 先拍快照，监听器在回调中取消订阅不会破坏迭代
        listeners = list(self._listeners.get(key, ()))
        delivered = 0
        for listener in listeners:
            try:
                listener(value)
                delivered += 1
            except Exception as e:
                # 推送通道可能已经关闭或缓冲已满
                logger.debug("广播投递失败，已忽略 | publisher=%s | key=%s | %s", self.name, key, e)
        return delivered

    def listener_count(self, key: str) -> int:
        """当前 ``key`` 下的监听器数量。"""
        return len(self._listeners.get(key, ()))

    def clear(self) -> None:
        """移除全部监听器（应用关闭时调用）。"""
        self._listeners.clear()
