"""
HTTP 网关 - 通过 FastAPI 暴露命令接口。

路由一览（除 /api/health 与 / 外都需要 X-API-Key 请求头）：
    POST /api/init                       初始化会话
    GET  /api/qr/{user_id}               查询登录码
    POST /api/send-message               发送文本消息
    POST /api/send-bulk                  批量发送文本消息
    POST /api/send-media                 发送媒体消息
    GET  /api/contact/{user_id}/{phone}  查询联系人
    GET  /api/status/{user_id}           查询会话状态
    POST /api/disconnect                 断开会话
    GET  /api/health                     健康检查
    GET  /                               服务信息

错误统一返回 {"error": 消息, "kind": 错误类型}，状态码按 kind 映射。
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from wagate import __version__
from wagate.client.bridge import BridgeClient
from wagate.commands.service import CommandService
from wagate.config.schema import Config
from wagate.errors import GatewayError
from wagate.session.registry import SessionRegistry
from wagate.session.storage import CredentialStore
from wagate.webhook.notifier import WebhookNotifier

# 错误类型 → HTTP 状态码
STATUS_BY_KIND = {
    "already_exists": 409,
    "not_found": 404,
    "not_ready": 400,
    "auth_failure": 401,
    "transport_error": 502,
    "internal_error": 500,
}


# ============================================================
# 请求体（字段名与后端约定的 camelCase 一致）
# ============================================================

class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class InitRequest(_Body):
    user_id: int | str = Field(alias="userId")
    force: bool = False
    clear_credentials: bool = Field(default=False, alias="clearCredentials")


class SendMessageRequest(_Body):
    user_id: int | str = Field(alias="userId")
    to: str = Field(min_length=1)
    message: str = Field(min_length=1)


class BulkMessage(_Body):
    to: str = Field(min_length=1)
    message: str = Field(min_length=1)


class SendBulkRequest(_Body):
    user_id: int | str = Field(alias="userId")
    messages: list[BulkMessage]


class SendMediaRequest(_Body):
    user_id: int | str = Field(alias="userId")
    to: str = Field(min_length=1)
    media_url: str = Field(alias="mediaUrl", min_length=1)
    caption: str | None = None


class DisconnectRequest(_Body):
    user_id: int | str = Field(alias="userId")
    clear_credentials: bool = Field(default=False, alias="clearCredentials")


# ============================================================
# 组装
# ============================================================

def build_service(config: Config) -> CommandService:
    """
    按配置组装命令服务：凭据存储 + Webhook 通知器 + 桥接客户端工厂 + 会话注册表。

    参数:
        config: 根配置

    返回:
        可直接使用的命令服务
    """
    store = CredentialStore(config.sessions_path)
    notifier = WebhookNotifier(
        config.webhook.url,
        api_key=config.webhook.api_key,
        timeout=config.webhook.timeout_s,
    )

    def client_factory(user_id: int | str, store: CredentialStore) -> BridgeClient:
        return BridgeClient(
            store.client_id(user_id),
            str(store.root),
            bridge_url=config.bridge.url,
            bridge_token=config.bridge.token,
            connect_timeout=config.bridge.connect_timeout_s,
            request_timeout=config.bridge.request_timeout_s,
        )

    registry = SessionRegistry(
        store,
        notifier,
        client_factory,
        startup_grace_s=config.sessions.startup_grace_s,
        media_fetch_timeout_s=config.sessions.media_fetch_timeout_s,
    )
    return CommandService(
        registry,
        bulk_delay_range=(config.sessions.bulk_delay_min_s, config.sessions.bulk_delay_max_s),
    )


def create_app(config: Config, service: CommandService | None = None) -> FastAPI:
    """
    创建网关 FastAPI 应用。

    参数:
        config: 根配置
        service: 命令服务（为空时按配置组装，测试中可注入）

    返回:
        FastAPI 应用；启动时按配置恢复会话，关闭时断开所有会话
    """
    service = service or build_service(config)
    api_key = config.gateway.api_key
    if not api_key:
        logger.warning("gateway.apiKey is not set, API key authentication is disabled")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(f"Starting wagate gateway (sessions dir: {service.registry.store.root})")
        logger.info(f"Webhook URL: {config.webhook.url or '(disabled)'}")
        if config.sessions.restore_on_start:
            restored = await service.registry.restore_sessions()
            logger.info(f"Restored {len(restored)} session(s)")

        yield

        logger.info("Shutting down gracefully...")
        await service.registry.drain()
        # 先尽量投递已入队的通知，再停止投递任务
        await service.registry.notifier.flush(timeout=config.webhook.flush_timeout_s)
        await service.registry.notifier.close()
        logger.info("Gateway stopped")

    async def verify_api_key(x_api_key: str | None = Header(None)) -> None:
        if api_key and x_api_key != api_key:
            raise HTTPException(status_code=401, detail="Unauthorized - Invalid API Key")

    app = FastAPI(
        title="wagate",
        description="Multi-session WhatsApp gateway",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        status_code = STATUS_BY_KIND.get(exc.kind, 500)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"error": str(exc), "kind": exc.kind})

    @app.exception_handler(ValueError)
    async def validation_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning(f"Invalid request to {request.url.path}: {exc}")
        return JSONResponse(status_code=400, content={"error": str(exc), "kind": "invalid_request"})

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        return service.health()

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {
            "service": "wagate",
            "version": __version__,
            "status": "running",
            "endpoints": {
                "health": "GET /api/health",
                "init": "POST /api/init",
                "qr": "GET /api/qr/{userId}",
                "sendMessage": "POST /api/send-message",
                "sendBulk": "POST /api/send-bulk",
                "sendMedia": "POST /api/send-media",
                "contact": "GET /api/contact/{userId}/{phoneNumber}",
                "status": "GET /api/status/{userId}",
                "disconnect": "POST /api/disconnect",
            },
        }

    router = APIRouter(prefix="/api", dependencies=[Depends(verify_api_key)])

    @router.post("/init")
    async def init(body: InitRequest) -> dict[str, Any]:
        result = await service.init(body.user_id, force=body.force, clear_credentials=body.clear_credentials)
        return {"success": True, **result}

    @router.get("/qr/{user_id}")
    async def qr(user_id: str) -> dict[str, Any]:
        code = service.get_code(user_id)
        return {"success": code["status"] in ("connected", "waiting_scan"), **code}

    @router.post("/send-message")
    async def send_message(body: SendMessageRequest) -> dict[str, Any]:
        receipt = await service.send(body.user_id, body.to, body.message)
        return {"success": True, **receipt.to_dict()}

    @router.post("/send-bulk")
    async def send_bulk(body: SendBulkRequest) -> dict[str, Any]:
        result = await service.send_bulk(body.user_id, [(m.to, m.message) for m in body.messages])
        return {"success": True, **result.to_dict()}

    @router.post("/send-media")
    async def send_media(body: SendMediaRequest) -> dict[str, Any]:
        receipt = await service.send_media(body.user_id, body.to, body.media_url, body.caption)
        return {"success": True, **receipt.to_dict()}

    @router.get("/contact/{user_id}/{phone_number}")
    async def contact(user_id: str, phone_number: str) -> dict[str, Any]:
        info = await service.get_contact(user_id, phone_number)
        return {"success": True, "contact": info.to_dict()}

    @router.get("/status/{user_id}")
    async def status(user_id: str) -> dict[str, Any]:
        return service.status(user_id)

    @router.post("/disconnect")
    async def disconnect(body: DisconnectRequest) -> dict[str, Any]:
        result = await service.disconnect(body.user_id, clear_credentials=body.clear_credentials)
        return {"success": True, **result}

    app.include_router(router)
    return app
