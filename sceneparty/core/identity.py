"""
sceneparty.core.identity
~~~~~~~~~~~~~~~~~~~~~~~~

极简身份模型：Cookie 中保存 JSON 格式的 ``{"id": ..., "name": ...}``。

这里不做任何签名或校验，所有调用方都视其为已认证的用户。
"""
from __future__ import annotations

import json

from pydantic import BaseModel, Field, ValidationError


class User(BaseModel):
    """当前操作者。"""

    id: str = Field(..., min_length=1, description="用户唯一标识")
    name: str = Field(..., description="显示名称")


# 内置测试账号（登录页直接从中选择）
TEST_USERS: list[User] = [
    User(id="user-1", name="User 1"),
    User(id="user-2", name="User 2"),
]


def find_test_user(user_id: str) -> User | None:
    """按 ID 查找内置测试账号。"""
    return next((u for u in TEST_USERS if u.id == user_id), None)


def decode_user_cookie(raw: str | None) -> User | None:
    """解析身份 Cookie，格式不合法时返回 ``None``。"""
    if not raw:
        return None
    try:
        return User.model_validate(json.loads(raw))
    except (ValueError, ValidationError):
        return None


def encode_user_cookie(user: User) -> str:
    """把用户序列化为 Cookie 值。"""
    return user.model_dump_json()
