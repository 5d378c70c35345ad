"""
API依赖项 - 从应用状态中取出组装好的服务
"""
from fastapi import Header, HTTPException, Request, status

from application.services.connection_url import ConnectionUrlGenerator
from application.webhooks import WebhookDispatcher
from infrastructure.container import Container


def get_container(request: Request) -> Container:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return container


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return get_container(request).dispatcher


def get_connection_url_generator(request: Request) -> ConnectionUrlGenerator:
    return get_container(request).connection_urls


async def get_acting_user_id(x_user_id: int = Header(..., alias="X-User-ID", gt=0)) -> int:
    """操作者ID（由上游管理后台网关注入）"""
    return x_user_id
