"""
sceneparty.main
~~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sceneparty.api import friends, media, music, notifications, rooms, users, ws
from sceneparty.core.config import settings
from sceneparty.core.logging import get_logger, request_id_ctx_var, setup_logging
from sceneparty.schemas.api_response import fail_response
from sceneparty.services.app_services import AppServices

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)

ServicesFactory = Callable[[], AppServices]


def create_app(services_factory: ServicesFactory = AppServices) -> FastAPI:
    """创建 FastAPI 实例。

    Args:
        services_factory: 构造 ``AppServices`` 的工厂，测试时可注入假的媒体 / 音乐实现。
    """

    # ── 生命周期 ──────────────────────────────────────────────────────

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
        # ── 启动 ──
        app.state.services = services_factory()
        logger.info(
            "🚀 应用已启动 | env=%s | debug=%s | log_level=%s",
            settings.ENVIRONMENT,
            settings.debug,
            settings.effective_log_level,
        )
        yield
        # ── 关闭 ──
        await app.state.services.shutdown()
        logger.info("👋 应用已关闭")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Scene Party 多人场景生成房间后端 API",
        version=settings.VERSION,
        debug=settings.debug,
        lifespan=lifespan,
    )

    # ── CORS 中间件 ───────────────────────────────────────────────────
    if settings.allow_cors_all_origins:
        # dev / test 环境：允许所有来源，方便本地调试
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[],
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def bind_request_id(
        request: Request, call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """为每个 HTTP 请求生成 request_id，写入日志上下文和响应头。"""
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        token = request_id_ctx_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response

    # ── 路由挂载 ──────────────────────────────────────────────────────
    app.include_router(users.router, prefix="/api", tags=["Users"])
    app.include_router(rooms.router, prefix="/api", tags=["Rooms"])
    app.include_router(music.router, prefix="/api", tags=["Music"])
    app.include_router(media.router, prefix="/api", tags=["Media"])
    app.include_router(friends.router, prefix="/api", tags=["Friends"])
    app.include_router(notifications.router, prefix="/api", tags=["Notifications"])
    app.include_router(ws.router, tags=["WebSocket Push"])

    # ── 异常处理器 ────────────────────────────────────────────────────

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """业务层的 404 / 409 / 401 等统一包装成 ApiResponse.fail()。"""
        return fail_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError,
    ) -> JSONResponse:
        return fail_response(422, "请求参数校验失败", data=jsonable_encoder(exc.errors()))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
        logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
        # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
        detail = str(exc) if not settings.is_prod else "服务器内部错误"
        return fail_response(500, detail)

    @app.get("/health", tags=["System"])
    async def health_check() -> JSONResponse:
        """验证服务是否正常运行。"""
        return JSONResponse(
            content={
                "status": "ok",
                "environment": settings.ENVIRONMENT,
                "debug": settings.debug,
                "log_level": settings.effective_log_level,
                "message": "Scene Party 已就绪！🚀",
            },
        )

    return app


app: FastAPI = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sceneparty.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
