"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.routes import admin as admin_routes
from api.routes import webhooks as webhook_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from infrastructure.bootstrap import build_reconciliation_service


# 初始化日志：在入口处显式配置
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 测试可预先注入 reconciliation_service，此时不再构建
    service = getattr(app.state, "reconciliation_service", None)
    owned = service is None
    if owned:
        service = build_reconciliation_service()
        app.state.reconciliation_service = service
    logger.info("application_started", environment=settings.ENVIRONMENT, strict=service.strict)

    yield

    if owned:
        await service.aclose()
        app.state.reconciliation_service = None
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="Stripe 付款 → Számlázz.hu 发票 → Google Sheets 台账 对账服务",
)

# 添加中间件（注意顺序：后添加的在外层，先执行）
# Request ID中间件在最外层，日志中间件即可带上request_id
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

# 注册全局异常处理器
register_exception_handlers(app)

# 注册路由
app.include_router(webhook_routes.router, prefix="/api/v1")
app.include_router(admin_routes.router, prefix="/api/v1")


@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点"""
    return success_response(data={"status": "healthy"}, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
