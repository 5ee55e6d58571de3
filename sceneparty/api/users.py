"""
sceneparty.api.users
~~~~~~~~~~~~~~~~~~~~

测试账号与登录会话。登录只是把选中的测试账号写进身份 Cookie。
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response

from sceneparty.api.deps import get_optional_user
from sceneparty.core.config import settings
from sceneparty.core.identity import TEST_USERS, User, encode_user_cookie, find_test_user
from sceneparty.core.logging import get_logger
from sceneparty.schemas.api_response import ApiResponse
from sceneparty.schemas.social import LoginBody

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.get("/users", summary="内置测试账号列表")
async def list_users() -> ApiResponse[list[User]]:
    return ApiResponse.ok(data=TEST_USERS)


@router.get("/session", summary="当前登录用户")
async def current_session(user: User | None = Depends(get_optional_user)) -> ApiResponse[User | None]:
    return ApiResponse.ok(data=user)


@router.post("/session", summary="以测试账号登录")
async def login(body: LoginBody, response: Response) -> ApiResponse[User]:
    user = find_test_user(body.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="用户不存在")
    response.set_cookie(
        settings.USER_COOKIE_NAME,
        encode_user_cookie(user),
        httponly=False,
        samesite="lax",
    )
    logger.info("用户登录 | user=%s", user.id)
    return ApiResponse.ok(data=user)


@router.delete("/session", summary="退出登录")
async def logout(response: Response) -> ApiResponse[None]:
    response.delete_cookie(settings.USER_COOKIE_NAME)
    return ApiResponse.ok(data=None)
