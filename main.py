"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from fastapi import FastAPI, Request

from api.middleware import RequestIDMiddleware, LoggingMiddleware
from api.routes import onboarding as onboarding_routes
from api.routes import webhooks as webhook_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger
from infrastructure.container import Container, build_container


logger = get_logger(__name__)


def create_app(container_factory: Callable[[], Awaitable[Container]] = build_container) -> FastAPI:
    """
    创建应用

    启动前若已设置 app.state.container（测试），直接使用且不负责关闭。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        owned = getattr(app.state, "container", None) is None
        if owned:
            app.state.container = await container_factory()
        logger.info("application_started", environment=settings.ENVIRONMENT)
        yield
        if owned:
            await app.state.container.aclose()
            app.state.container = None
        logger.info("application_shutdown", message="Application shutdown")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        description="支付渠道 Webhook 对账服务",
    )

    # 添加中间件（注意顺序：从下往上执行）
    # 1. 日志中间件（依赖request_id）
    app.add_middleware(LoggingMiddleware)
    # 2. Request ID中间件（最先执行，为后续中间件提供request_id）
    app.add_middleware(RequestIDMiddleware)

    # 注册全局异常处理器
    register_exception_handlers(app)

    # 注册路由
    app.include_router(webhook_routes.router, prefix="/api/v1")
    app.include_router(onboarding_routes.router, prefix="/api/v1")

    @app.get("/", tags=["Root"])
    async def root():
        """API根路径"""
        return success_response(
            data={
                "name": settings.PROJECT_NAME,
                "version": settings.VERSION,
                "docs": "/docs",
            },
        )

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """健康检查端点（缓存不可用时事件锁和令牌共享失效，报告 degraded）"""
        container = getattr(request.app.state, "container", None)
        cache_ok = container is not None and await container.cache.health_check()
        if not cache_ok:
            logger.warning("health_check_cache_unavailable")
        return success_response(data={
            "status": "healthy" if cache_ok else "degraded",
            "cache": "ok" if cache_ok else "unavailable",
        })

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
