"""
Webhook 模块 - 会话事件到业务后端的异步通知。

- events.py：通知结构与构造函数
- notifier.py：按用户排序、带超时、失败即丢弃的投递器
"""

from wagate.webhook.events import WebhookEvent
from wagate.webhook.notifier import WebhookNotifier

__all__ = ["WebhookEvent", "WebhookNotifier"]
