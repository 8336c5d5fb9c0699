"""
Webhook 事件类型定义模块 - 定义推送给业务后端的通知结构。

所有通知都用 WebhookEvent 表示：
- event：事件名，同时决定推送路径（/whatsapp/<event>）
- user_id：所属用户，通知按用户分队列、按顺序投递
- data：JSON 请求体（camelCase 键名，与后端约定一致）

本模块同时提供五个构造函数，对应会话的五种状态变化：
qr_ready / connected / message_received / disconnected / auth_failed
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from wagate.client.base import ClientInfo, IncomingMessage, MediaPayload

QR_READY = "qr-ready"
CONNECTED = "connected"
MESSAGE_RECEIVED = "message-received"
DISCONNECTED = "disconnected"
AUTH_FAILED = "auth-failed"


@dataclass
class WebhookEvent:
    """
    一条待投递的 Webhook 通知。

    属性:
        event: 事件名（如 "qr-ready"）
        user_id: 所属用户标识
        data: JSON 请求体
        created_at: 事件产生时间
    """

    event: str
    user_id: int | str
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def endpoint(self) -> str:
        """推送路径，拼接在后端基础地址之后。"""
        return f"/whatsapp/{self.event}"


def qr_ready(user_id: int | str, code: str, image: str | None) -> WebhookEvent:
    return WebhookEvent(QR_READY, user_id, {"userId": user_id, "qrCode": code, "qrImage": image})


def connected(user_id: int | str, info: ClientInfo | None) -> WebhookEvent:
    identity = info.to_dict() if info else {}
    return WebhookEvent(CONNECTED, user_id, {
        "userId": user_id,
        "phoneNumber": identity.get("user"),
        "platform": identity.get("platform"),
        "identity": identity,
    })


def message_received(
    user_id: int | str,
    message: IncomingMessage,
    media: MediaPayload | None = None,
) -> WebhookEvent:
    """构造收到消息的通知；media 仅在附件下载成功时出现。"""
    data: dict[str, Any] = {
        "userId": user_id,
        "messageId": message.id,
        "from": message.from_,
        "to": message.to,
        "body": message.body,
        "type": message.type,
        "timestamp": message.timestamp,
        "hasMedia": message.has_media,
        "isForwarded": message.is_forwarded,
        "fromMe": message.from_me,
    }
    if media is not None:
        data["media"] = media.to_dict()
    return WebhookEvent(MESSAGE_RECEIVED, user_id, data)


def disconnected(user_id: int | str, reason: str) -> WebhookEvent:
    return WebhookEvent(DISCONNECTED, user_id, {"userId": user_id, "reason": reason})


def auth_failed(user_id: int | str, error: str) -> WebhookEvent:
    return WebhookEvent(AUTH_FAILED, user_id, {"userId": user_id, "error": error})
