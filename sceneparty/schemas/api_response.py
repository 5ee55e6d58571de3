"""
sceneparty.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

全局统一应答体，所有 REST 接口复用此结构返回一致的 JSON 格式。

业务层只返回 ``None`` / 结果枚举，不抛异常；由路由层把它们映射成
带 HTTP 状态码的 ``ApiResponse.fail``（见 ``fail_response``）。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """统一 JSON 应答体。

    .. code-block:: json

        {"code": 200, "data": {...}, "msg": "success"}

    Attributes:
        code: 业务状态码，与 HTTP 状态码保持一致。
        data: 实际业务数据。
        msg: 人类可读的状态消息。
    """

    code: int = Field(default=200, description="业务状态码")
    data: T = Field(..., description="业务数据")
    msg: str = Field(default="success", description="状态消息")

    @classmethod
    def ok(cls, data: T, msg: str = "success", code: int = 200) -> ApiResponse[T]:
        """快捷构造成功响应。"""
        return cls(code=code, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        """快捷构造失败响应。"""
        return cls(code=code, data=data, msg=msg)


def fail_response(status_code: int, msg: str, data: Any = None) -> JSONResponse:
    """构造带对应 HTTP 状态码的失败响应（404 / 409 / 400 等）。"""
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse.fail(msg=msg, code=status_code, data=data).model_dump(mode="json"),
    )
