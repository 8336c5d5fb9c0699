"""
会话模块 - 多用户 WhatsApp 会话的生命周期管理（网关核心）。

- storage.py：磁盘凭据目录（命名约定、锁文件清理、会话发现、删除）
- session.py：单个会话的状态机与命令代理
- registry.py：会话注册表（一用户一会话、恢复、排空）

【架构定位】
  命令接口 → SessionRegistry（查找/创建/销毁）→ Session（驱动客户端）
  客户端事件 → Session 状态处理器 → WebhookNotifier → 业务后端
"""

from wagate.session.registry import SessionRegistry
from wagate.session.session import ConnectionState, SendReceipt, Session
from wagate.session.storage import CredentialStore

__all__ = ["ConnectionState", "CredentialStore", "SendReceipt", "Session", "SessionRegistry"]
