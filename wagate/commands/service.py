"""
命令服务模块 - 网关对外的命令接口。

CommandService 把外部命令（HTTP 层或 CLI）翻译成注册表与会话的调用：
- init：创建会话（force 时先销毁旧会话）
- get_code：查询待扫描的登录码
- send / send_bulk / send_media：发送消息
- get_contact：查询联系人
- status：查询会话状态（从不失败）
- disconnect：断开会话（从不失败）
- health：服务健康信息

命令失败时抛出 wagate.errors 中带 kind 的错误，由调用方映射为具体响应。
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from wagate.errors import GatewayError, NotFoundError
from wagate.client.base import Contact
from wagate.session.registry import SessionRegistry
from wagate.session.session import SendReceipt, Session
from wagate.utils.helpers import normalize_user_id

SERVICE_NAME = "whatsapp-web.js"


@dataclass
class BulkItemResult:
    """批量发送中单条消息的结果。"""

    to: str
    success: bool
    message_id: str | None = None
    timestamp: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"to": self.to, "success": True, "messageId": self.message_id, "timestamp": self.timestamp}
        return {"to": self.to, "success": False, "error": self.error}


@dataclass
class BulkResult:
    """批量发送的汇总结果（顺序与输入一致）。"""

    results: list[BulkItemResult] = field(default_factory=list)

    @property
    def sent(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "sent": self.sent,
            "failed": self.failed,
        }


class CommandService:
    """
    网关命令接口。

    属性:
        registry: 会话注册表
        bulk_delay_range: 批量发送时相邻两条消息之间的随机间隔范围（秒）
    """

    def __init__(
        self,
        registry: SessionRegistry,
        bulk_delay_range: tuple[float, float] = (3.0, 8.0),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        low, high = bulk_delay_range
        if low < 0 or high < low:
            raise ValueError(f"Invalid bulk delay range: {bulk_delay_range}")
        self.registry = registry
        self.bulk_delay_range = (low, high)
        self._sleep = sleep

    def _get(self, user_id: int | str) -> Session:
        session = self.registry.get_session(user_id)
        if session is None:
            raise NotFoundError(f"Session not found for user {user_id}")
        return session

    def _get_ready(self, user_id: int | str) -> Session:
        session = self._get(user_id)
        session.ensure_ready()
        return session

    async def init(
        self,
        user_id: int | str,
        force: bool = False,
        clear_credentials: bool = False,
    ) -> dict[str, Any]:
        """
        初始化用户会话。

        参数:
            user_id: 用户标识
            force: 已有会话时先销毁再重建（重连路径）
            clear_credentials: 配合 force 使用，销毁时同时清除凭据以强制重新扫码

        异常:
            AlreadyExistsError: 已有会话且未指定 force
        """
        user_id = normalize_user_id(user_id)
        if force:
            await self.registry.destroy_session(user_id, clear_credentials)
        elif clear_credentials and not self.registry.has_session(user_id):
            # 没有内存会话时仍可清除遗留凭据，再从头扫码
            await self.registry.destroy_session(user_id, clear_credentials=True)

        await self.registry.create_session(user_id)
        return {
            "userId": user_id,
            "message": "WhatsApp initialization started. Check for QR code webhook.",
        }

    def get_code(self, user_id: int | str) -> dict[str, Any]:
        """查询登录码状态。会话不存在时抛出 NotFoundError。"""
        return self._get(user_id).code_status()

    async def send(self, user_id: int | str, recipient: str, body: str) -> SendReceipt:
        return await self._get_ready(user_id).send_message(recipient, body)

    async def send_bulk(self, user_id: int | str, messages: list[tuple[str, str]]) -> BulkResult:
        """
        依次发送多条消息，单条失败不会中断整个批次。

        相邻两次发送之间插入一个随机间隔，降低被判定为垃圾消息的风险。
        这个间隔是可调的经验值，并不保证安全。

        参数:
            user_id: 用户标识
            messages: [(收件人, 正文), ...]

        返回:
            与输入顺序一致的逐条结果
        """
        session = self._get_ready(user_id)
        result = BulkResult()

        for index, (recipient, body) in enumerate(messages):
            if index > 0:
                await self._sleep(random.uniform(*self.bulk_delay_range))
            try:
                receipt = await session.send_message(recipient, body)
                result.results.append(BulkItemResult(
                    to=recipient,
                    success=True,
                    message_id=receipt.message_id,
                    timestamp=receipt.timestamp,
                ))
            except GatewayError as e:
                result.results.append(BulkItemResult(to=recipient, success=False, error=str(e)))

        logger.info(f"Bulk send for user {session.user_id}: {result.sent} sent, {result.failed} failed")
        return result

    async def send_media(
        self,
        user_id: int | str,
        recipient: str,
        source_url: str,
        caption: str | None = None,
    ) -> SendReceipt:
        return await self._get_ready(user_id).send_media(recipient, source_url, caption)

    async def get_contact(self, user_id: int | str, phone_number: str) -> Contact:
        """查询联系人；查询无结果时抛出 NotFoundError。"""
        contact = await self._get_ready(user_id).get_contact_info(phone_number)
        if contact is None:
            raise NotFoundError(f"Contact not found: {phone_number}")
        return contact

    def status(self, user_id: int | str) -> dict[str, Any]:
        """查询会话状态（从不失败）。"""
        try:
            user_id = normalize_user_id(user_id)
        except ValueError:
            return {"userId": user_id, "exists": False, "connected": False, "state": "no_session"}

        session = self.registry.get_session(user_id)
        if session is None:
            return {"userId": user_id, "exists": False, "connected": False, "state": "no_session"}
        return {"userId": user_id, **session.status()}

    async def disconnect(self, user_id: int | str, clear_credentials: bool = False) -> dict[str, Any]:
        """断开会话（从不失败）。"""
        await self.registry.destroy_session(user_id, clear_credentials)
        return {"userId": user_id, "message": "WhatsApp disconnected successfully"}

    def health(self) -> dict[str, Any]:
        sessions = self.registry.get_all_sessions()
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "activeSessions": len(sessions),
            "sessions": sessions,
        }
