"""
API依赖项 - 服务获取与管理端访问控制
"""
import hmac
import ipaddress
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader

from application.services.reconciliation_service import ReconciliationService
from core.config import settings
from core.exceptions import ForbiddenException, UnauthorizedException
from core.logging_config import get_logger
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


logger = get_logger(__name__)

api_key_header = APIKeyHeader(
    name="X-API-Key",
    scheme_name="ApiKey",
    description="Admin API key (ADMIN__API_KEY)",
    auto_error=False,
)


async def get_reconciliation_service(request: Request) -> ReconciliationService:
    """应用启动时在 lifespan 中构建，整个进程共享"""
    service = getattr(request.app.state, "reconciliation_service", None)
    if service is None:
        raise RuntimeError("Reconciliation service is not initialised")
    return service


async def get_task_dispatcher() -> TaskDispatcher:
    return TaskDispatcher()


def _is_loopback(host: Optional[str]) -> bool:
    if not host:
        return False
    if host in {"localhost", "testclient"}:
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


async def require_admin(request: Request, api_key: Optional[str] = Depends(api_key_header)) -> None:
    """管理端点：可选仅限本机访问，配置了 ADMIN__API_KEY 时校验 X-API-Key"""
    cfg = settings.admin
    host = request.client.host if request.client else None
    if cfg.localhost_only and not _is_loopback(host):
        logger.warning("admin_access_denied", reason="not_localhost", host=host)
        raise ForbiddenException("Admin endpoints are only available from localhost")
    if cfg.api_key:
        if not api_key or not hmac.compare_digest(api_key, cfg.api_key):
            logger.warning("admin_access_denied", reason="invalid_api_key", host=host)
            raise UnauthorizedException("Invalid or missing API key")
