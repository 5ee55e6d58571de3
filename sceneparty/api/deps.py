"""
sceneparty.api.deps
~~~~~~~~~~~~~~~~~~~

路由层公共依赖：应用服务容器与当前用户。
"""
from __future__ import annotations

from fastapi import HTTPException, Request, WebSocket

from sceneparty.core.config import settings
from sceneparty.core.identity import User, decode_user_cookie
from sceneparty.services.app_services import AppServices


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_ws_services(websocket: WebSocket) -> AppServices:
    return websocket.app.state.services


def get_optional_user(request: Request) -> User | None:
    return decode_user_cookie(request.cookies.get(settings.USER_COOKIE_NAME))


def get_current_user(request: Request) -> User:
    """读取身份 Cookie，缺失或格式不对时返回 401。"""
    user = get_optional_user(request)
    if user is None:
        raise HTTPException(status_code=401, detail="未登录")
    return user


def get_ws_user(websocket: WebSocket) -> User | None:
    return decode_user_cookie(websocket.cookies.get(settings.USER_COOKIE_NAME))
