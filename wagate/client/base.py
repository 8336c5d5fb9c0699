"""
聊天客户端基类模块 - 定义会话所驱动的外部 WhatsApp 客户端的统一接口。

会话（Session）并不直接实现 WhatsApp 协议，而是驱动一个"黑盒"客户端：
- 操作：initialize / send_message / send_media / get_contact /
  download_media / logout / destroy / kill
- 事件：qr / ready / message / disconnected / auth_failure

具体实现（如 BridgeClient）继承 BaseChatClient，实现抽象方法，
并在收到底层事件时调用 _emit()，由基类按注册顺序依次调用处理器。

【核心约定】
- 同一客户端的事件严格按到达顺序串行派发（_emit 逐个 await 处理器）
- 处理器抛出的异常只记录日志，不会中断客户端的事件循环
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from loguru import logger

# 事件名称常量
EVENT_QR = "qr"
EVENT_READY = "ready"
EVENT_MESSAGE = "message"
EVENT_DISCONNECTED = "disconnected"
EVENT_AUTH_FAILURE = "auth_failure"

EVENTS = (EVENT_QR, EVENT_READY, EVENT_MESSAGE, EVENT_DISCONNECTED, EVENT_AUTH_FAILURE)

EventHandler = Callable[..., Awaitable[None]]


@dataclass
class ClientInfo:
    """已登录账号的身份信息（ready 事件后可用）。"""

    user: str                      # 手机号（不含 @c.us 后缀）
    platform: str | None = None    # 手机平台（android / iphone 等）
    pushname: str | None = None    # 账号昵称

    def to_dict(self) -> dict[str, Any]:
        return {"user": self.user, "platform": self.platform, "pushname": self.pushname}


@dataclass
class MediaPayload:
    """媒体内容：base64 编码数据 + MIME 类型。"""

    mimetype: str
    data: str                      # base64 编码
    filename: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"mimetype": self.mimetype, "data": self.data, "filename": self.filename}


@dataclass
class IncomingMessage:
    """客户端收到的一条消息。"""

    id: str
    from_: str
    to: str
    body: str = ""
    type: str = "chat"             # chat / image / document / ptt 等
    timestamp: int | None = None
    has_media: bool = False
    is_forwarded: bool = False
    from_me: bool = False


@dataclass
class SentMessage:
    """客户端发送成功后返回的消息回执。"""

    id: str
    timestamp: int | None = None


@dataclass
class Contact:
    """联系人信息。"""

    phone: str
    name: str | None = None
    is_my_contact: bool = False
    is_blocked: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "phone": self.phone,
            "name": self.name,
            "isMyContact": self.is_my_contact,
            "isBlocked": self.is_blocked,
        }


class BaseChatClient(ABC):
    """
    外部聊天客户端抽象基类。

    每个实例绑定一个用户的凭据命名空间（client_id + data_path），
    由 Session 通过 client_factory 创建并独占使用。

    属性:
        client_id: 凭据命名空间（如 "user-7"）
        data_path: 凭据根目录
        info: 登录后的身份信息，ready 之前为 None
    """

    def __init__(self, client_id: str, data_path: str):
        self.client_id = client_id
        self.data_path = data_path
        self.info: ClientInfo | None = None
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event: str, handler: EventHandler) -> None:
        """注册事件处理器。同一事件可注册多个，按注册顺序调用。"""
        if event not in EVENTS:
            raise ValueError(f"Unknown client event: {event}")
        self._handlers.setdefault(event, []).append(handler)

    async def _emit(self, event: str, *args: Any) -> None:
        """按注册顺序串行调用事件处理器，单个处理器的异常只记录日志。"""
        for handler in self._handlers.get(event, []):
            try:
                await handler(*args)
            except Exception as e:
                logger.error(f"Error in {event} handler for {self.client_id}: {e}")

    @abstractmethod
    async def initialize(self) -> None:
        """
        启动客户端（可能耗时数十秒）。

        启动成功后，后续进展通过 qr / ready / auth_failure 事件通知。
        """

    @abstractmethod
    async def send_message(self, chat_id: str, content: str) -> SentMessage:
        """发送文本消息。"""

    @abstractmethod
    async def send_media(self, chat_id: str, media: MediaPayload, caption: str | None = None) -> SentMessage:
        """发送媒体消息，可附带说明文字。"""

    @abstractmethod
    async def get_contact(self, chat_id: str) -> Contact:
        """查询联系人信息。"""

    @abstractmethod
    async def download_media(self, message: IncomingMessage) -> MediaPayload:
        """下载收到消息中的附件。"""

    @abstractmethod
    async def logout(self) -> None:
        """协议层注销（使手机端的设备关联失效）。"""

    @abstractmethod
    async def destroy(self) -> None:
        """优雅关闭客户端并释放底层进程/连接。"""

    @abstractmethod
    async def kill(self) -> None:
        """强制终止底层进程/连接（destroy 失败时使用）。"""
