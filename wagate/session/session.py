"""
会话实现模块 - 单个用户的 WhatsApp 连接生命周期。

Session 独占一个外部客户端，负责：
1. 启动客户端（不等待连接完成，进展通过事件观察）
2. 将客户端事件转换为唯一权威的 state 字段上的状态迁移
3. 每次状态迁移后，以副作用的形式发出一条 Webhook 通知
4. 在已连接状态下代理发送命令（文本、媒体、联系人查询）
5. 断开连接、可选注销并清除磁盘凭据

【状态机】
    UNINITIALIZED --qr--> AWAITING_SCAN --ready--> CONNECTED
    CONNECTED --disconnected / disconnect()--> DISCONNECTED
    任意状态 --auth_failure--> ERROR
    ERROR / DISCONNECTED --initialize()--> UNINITIALIZED

使用已保存的凭据启动时，客户端可能不发 qr 而直接发 ready，
此时 UNINITIALIZED 直接迁移到 CONNECTED。

【事件隔离】
每个处理器都绑定了产生事件的客户端实例，只有当它仍是当前客户端时才生效，
已被替换或已断开的旧客户端迟到的事件会被忽略。
"""

import asyncio
import base64
from dataclasses import dataclass
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any, Callable

import httpx
from loguru import logger

from wagate.client.base import (
    EVENT_AUTH_FAILURE,
    EVENT_DISCONNECTED,
    EVENT_MESSAGE,
    EVENT_QR,
    EVENT_READY,
    BaseChatClient,
    ClientInfo,
    Contact,
    IncomingMessage,
    MediaPayload,
)
from wagate.errors import AuthFailureError, GatewayError, NotReadyError, TransportError
from wagate.session.storage import CredentialStore
from wagate.utils.helpers import to_chat_id
from wagate.webhook import events
from wagate.webhook.notifier import WebhookNotifier

DEFAULT_MEDIA_TYPE = "application/octet-stream"
MEDIA_FILENAME = "media-file"

# client_factory(user_id, store) -> 绑定到该用户凭据命名空间的新客户端
ClientFactory = Callable[[int | str, CredentialStore], BaseChatClient]
# code_renderer(code) -> 可渲染的二维码编码（如 data URL），不可用时返回 None
CodeRenderer = Callable[[str], str | None]


class ConnectionState(str, Enum):
    """会话连接状态。"""

    UNINITIALIZED = "uninitialized"
    AWAITING_SCAN = "awaiting_scan"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class SendReceipt:
    """发送成功的回执。"""

    message_id: str
    timestamp: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"messageId": self.message_id, "timestamp": self.timestamp}


class Session:
    """
    单个用户的 WhatsApp 会话。

    属性:
        user_id: 用户标识（注册表的键）
        state: 当前连接状态
        pending_code: 待扫描的登录码，仅在 AWAITING_SCAN 状态下存在
        last_error: 最近一次致命错误，仅在 ERROR 状态下存在
        auth_failed: ERROR 是否由凭据被拒绝引起（此时命令以 AuthFailureError 失败）
        identity: 登录账号信息，CONNECTED 之后可用
    """

    def __init__(
        self,
        user_id: int | str,
        store: CredentialStore,
        notifier: WebhookNotifier,
        client_factory: ClientFactory,
        code_renderer: CodeRenderer | None = None,
        startup_grace_s: float = 1.0,
        media_fetch_timeout_s: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.user_id = user_id
        self.store = store
        self.notifier = notifier
        self.client_factory = client_factory
        self.code_renderer = code_renderer
        self.startup_grace_s = startup_grace_s
        self.media_fetch_timeout_s = media_fetch_timeout_s
        self._http_client = http_client

        self.state = ConnectionState.UNINITIALIZED
        self.pending_code: str | None = None
        self.last_error: str | None = None
        self.auth_failed = False
        self.identity: ClientInfo | None = None

        self._client: BaseChatClient | None = None
        self._init_task: asyncio.Task | None = None

    @property
    def credential_path(self) -> Path:
        return self.store.session_path(self.user_id)

    @property
    def is_ready(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def has_client(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        创建并启动客户端，启动被"发起"后即返回，不等待连接成功。

        流程：
        1. 如已有客户端，先将其关闭（保证同一时刻最多一个活动客户端）
        2. 重置状态、登录码与错误信息
        3. 清理凭据目录中遗留的浏览器锁文件
        4. 创建客户端并注册五个事件处理器
        5. 在后台任务中启动客户端，等待一个短暂的启动间隔后返回
        """
        if self._client is not None:
            logger.info(f"Replacing existing WhatsApp client for user {self.user_id}")
            await self._release_client(logout=False)

        logger.info(f"Initializing WhatsApp client for user {self.user_id}...")
        self.state = ConnectionState.UNINITIALIZED
        self.pending_code = None
        self.last_error = None
        self.auth_failed = False
        self.identity = None

        self.store.cleanup_locks(self.user_id)

        client = self.client_factory(self.user_id, self.store)
        client.on(EVENT_QR, partial(self._on_qr, client))
        client.on(EVENT_READY, partial(self._on_ready, client))
        client.on(EVENT_MESSAGE, partial(self._on_message, client))
        client.on(EVENT_DISCONNECTED, partial(self._on_disconnected, client))
        client.on(EVENT_AUTH_FAILURE, partial(self._on_auth_failure, client))
        self._client = client

        # 客户端启动可能耗时数十秒（冷启动浏览器），放到后台执行
        self._init_task = asyncio.create_task(self._start(client))

        if self.startup_grace_s > 0:
            await asyncio.sleep(self.startup_grace_s)
        logger.info(f"Client initialization started for user {self.user_id}")

    async def _start(self, client: BaseChatClient) -> None:
        try:
            await client.initialize()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Client initialization error for user {self.user_id}: {e}")
            if client is self._client:
                self.state = ConnectionState.ERROR
                self.last_error = str(e)

    async def disconnect(self, clear_credentials: bool = False) -> None:
        """
        断开会话（幂等，从不抛出异常）。

        无论之前处于何种状态，都迁移到 DISCONNECTED 并清除登录码与错误信息。
        存在活动客户端时：clear_credentials 为 True 则先尝试协议层注销，
        然后优雅关闭客户端，关闭失败时强制终止；以上步骤失败都只记录日志。
        clear_credentials 为 True 时，在客户端完全关闭之后删除磁盘凭据。

        参数:
            clear_credentials: 是否注销并删除凭据（下次初始化需要重新扫码）
        """
        logger.info(
            f"Disconnecting WhatsApp client for user {self.user_id} "
            f"(clear_credentials={clear_credentials})..."
        )
        self.state = ConnectionState.DISCONNECTED
        self.pending_code = None
        self.last_error = None
        self.auth_failed = False

        await self._release_client(logout=clear_credentials)
        self.identity = None

        # 凭据只能在客户端完全关闭之后删除，否则可能损坏仍在使用的目录
        if clear_credentials:
            self.store.clear(self.user_id)

        logger.info(f"Disconnected WhatsApp client for user {self.user_id}")

    async def _release_client(self, logout: bool) -> None:
        """摘除当前客户端（之后它的事件会被忽略），再将其关闭。"""
        client, self._client = self._client, None
        init_task, self._init_task = self._init_task, None

        if init_task is not None and not init_task.done():
            init_task.cancel()
            await asyncio.wait({init_task})

        if client is None:
            return

        if logout:
            try:
                await client.logout()
                logger.info(f"Logged out WhatsApp session for user {self.user_id}")
            except Exception as e:
                logger.error(f"Error during logout for user {self.user_id}: {e}")

        try:
            await client.destroy()
            logger.info(f"Client closed for user {self.user_id}")
        except Exception as e:
            logger.error(f"Error destroying client for user {self.user_id}: {e}")
            try:
                await client.kill()
                logger.info(f"Force closed client for user {self.user_id}")
            except Exception as kill_error:
                logger.error(f"Error force closing client for user {self.user_id}: {kill_error}")

    # ------------------------------------------------------------------
    # 事件处理器（状态迁移 + Webhook 副作用）
    # ------------------------------------------------------------------

    def _is_current(self, client: BaseChatClient, event: str) -> bool:
        if client is not self._client:
            logger.debug(f"Ignoring {event} from stale client for user {self.user_id}")
            return False
        return True

    async def _on_qr(self, client: BaseChatClient, code: str) -> None:
        if not self._is_current(client, EVENT_QR):
            return
        logger.info(f"QR code generated for user {self.user_id}")
        self.pending_code = code
        self.state = ConnectionState.AWAITING_SCAN
        self.notifier.notify(events.qr_ready(self.user_id, code, self._render_code(code)))

    async def _on_ready(self, client: BaseChatClient) -> None:
        if not self._is_current(client, EVENT_READY):
            return
        logger.info(f"WhatsApp ready for user {self.user_id}")
        self.state = ConnectionState.CONNECTED
        self.pending_code = None
        self.last_error = None
        self.auth_failed = False
        self.identity = client.info
        self.notifier.notify(events.connected(self.user_id, client.info))

    async def _on_message(self, client: BaseChatClient, message: IncomingMessage) -> None:
        if not self._is_current(client, EVENT_MESSAGE):
            return
        logger.info(f"Message received for user {self.user_id} from {message.from_}")

        media = None
        if message.has_media:
            try:
                media = await client.download_media(message)
            except Exception as e:
                # 附件下载失败不丢弃通知，只是不携带附件
                logger.error(f"Error downloading media for user {self.user_id}: {e}")

        self.notifier.notify(events.message_received(self.user_id, message, media))

    async def _on_disconnected(self, client: BaseChatClient, reason: str) -> None:
        if not self._is_current(client, EVENT_DISCONNECTED):
            return
        logger.info(f"WhatsApp disconnected for user {self.user_id}: {reason}")
        self.state = ConnectionState.DISCONNECTED
        self.pending_code = None
        self.notifier.notify(events.disconnected(self.user_id, reason))

    async def _on_auth_failure(self, client: BaseChatClient, error: str) -> None:
        if not self._is_current(client, EVENT_AUTH_FAILURE):
            return
        logger.error(f"Auth failure for user {self.user_id}: {error}")
        self.state = ConnectionState.ERROR
        self.pending_code = None
        self.last_error = str(error)
        self.auth_failed = True
        self.notifier.notify(events.auth_failed(self.user_id, str(error)))

    def _render_code(self, code: str) -> str | None:
        if self.code_renderer is None:
            return None
        try:
            return self.code_renderer(code)
        except Exception as e:
            logger.warning(f"Failed to render QR code for user {self.user_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # 命令
    # ------------------------------------------------------------------

    def ensure_ready(self) -> BaseChatClient:
        """
        检查会话可以执行命令，返回当前客户端。

        异常:
            AuthFailureError: 凭据已被拒绝，需要带 clearCredentials 重新初始化
            NotReadyError: 会话尚未连接
        """
        if self.auth_failed:
            raise AuthFailureError(f"WhatsApp rejected the credentials for user {self.user_id}: {self.last_error}")
        if self.state is not ConnectionState.CONNECTED or self._client is None:
            raise NotReadyError(f"WhatsApp client is not ready for user {self.user_id}")
        return self._client

    async def send_message(self, recipient: str, body: str) -> SendReceipt:
        """
        发送文本消息。

        参数:
            recipient: 收件人手机号（含国家码）或完整地址
            body: 消息正文

        返回:
            发送回执

        异常:
            AuthFailureError: 凭据已被拒绝
            NotReadyError: 会话未连接（不会触发任何发送）
            TransportError: 发送失败
        """
        client = self.ensure_ready()
        chat_id = to_chat_id(recipient)
        try:
            sent = await client.send_message(chat_id, body)
        except GatewayError as e:
            logger.error(f"Error sending message for user {self.user_id}: {e}")
            raise
        except Exception as e:
            logger.error(f"Error sending message for user {self.user_id}: {e}")
            raise TransportError(str(e)) from e
        return SendReceipt(message_id=sent.id, timestamp=sent.timestamp)

    async def send_media(self, recipient: str, source_url: str, caption: str | None = None) -> SendReceipt:
        """
        下载 source_url 指向的内容并作为媒体消息发送。

        异常:
            NotReadyError: 会话未连接
            TransportError: 下载或发送失败
        """
        client = self.ensure_ready()
        chat_id = to_chat_id(recipient)
        media = await self._fetch_media(source_url)
        try:
            sent = await client.send_media(chat_id, media, caption)
        except GatewayError as e:
            logger.error(f"Error sending media for user {self.user_id}: {e}")
            raise
        except Exception as e:
            logger.error(f"Error sending media for user {self.user_id}: {e}")
            raise TransportError(str(e)) from e
        return SendReceipt(message_id=sent.id, timestamp=sent.timestamp)

    async def _fetch_media(self, url: str) -> MediaPayload:
        try:
            if self._http_client is not None:
                response = await self._http_client.get(
                    url, follow_redirects=True, timeout=self.media_fetch_timeout_s
                )
            else:
                async with httpx.AsyncClient(
                    follow_redirects=True, timeout=self.media_fetch_timeout_s
                ) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # InvalidURL 在请求构造之前抛出，不属于 HTTPError
            logger.error(f"Error fetching media for user {self.user_id} from {url}: {e}")
            raise TransportError(f"Failed to fetch media from {url}: {e}") from e

        content_type = response.headers.get("content-type", "")
        mimetype = content_type.split(";")[0].strip() or DEFAULT_MEDIA_TYPE
        return MediaPayload(
            mimetype=mimetype,
            data=base64.b64encode(response.content).decode("ascii"),
            filename=MEDIA_FILENAME,
        )

    async def get_contact_info(self, phone_number: str) -> Contact | None:
        """查询联系人信息（尽力而为，任何失败都返回 None）。"""
        client = self._client
        if client is None:
            return None
        try:
            return await client.get_contact(to_chat_id(phone_number))
        except Exception as e:
            logger.error(f"Error getting contact info for user {self.user_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """返回 {exists, connected, state, error?, code?} 状态快照。"""
        result: dict[str, Any] = {
            "exists": True,
            "connected": self.is_ready,
            "state": self.state.value,
        }
        if self.last_error:
            result["error"] = self.last_error
        if self.pending_code:
            result["code"] = self.pending_code
        return result

    def code_status(self) -> dict[str, Any]:
        """返回登录码状态：已连接 / 等待扫码（附登录码）/ 出错 / 已断开 / 初始化中。"""
        if self.is_ready:
            return {"status": "connected"}
        if self.pending_code:
            return {"status": "waiting_scan", "code": self.pending_code}
        if self.state is ConnectionState.ERROR:
            return {"status": "error", "error": self.last_error}
        if self.state is ConnectionState.DISCONNECTED:
            return {"status": "disconnected"}
        return {"status": "initializing"}
