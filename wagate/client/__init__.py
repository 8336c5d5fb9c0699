"""
聊天客户端模块 - 会话所驱动的外部 WhatsApp 客户端。

- BaseChatClient：客户端抽象基类（操作 + 事件）
- BridgeClient：通过 WebSocket 连接 Node.js 桥接服务的实现

消息流向：
  WhatsApp → 桥接服务 → BridgeClient 事件 → Session 状态处理器 → Webhook
"""

from wagate.client.base import (
    BaseChatClient,
    ClientInfo,
    Contact,
    IncomingMessage,
    MediaPayload,
    SentMessage,
)
from wagate.client.bridge import BridgeClient

__all__ = [
    "BaseChatClient",
    "BridgeClient",
    "ClientInfo",
    "Contact",
    "IncomingMessage",
    "MediaPayload",
    "SentMessage",
]
