"""
错误类型定义 - 网关对外暴露的统一错误分类。

命令接口（init、send、send-media 等）抛出的错误都属于 GatewayError 的子类，
并携带一个稳定的 kind 字符串，HTTP 层据此映射状态码，调用方据此决定下一步动作：
- already_exists：会话已存在，需走 force/重连路径
- not_found：该用户没有会话
- not_ready：会话尚未连接，需先查询状态
- auth_failure：WhatsApp 拒绝了凭据
- transport_error：发送或下载失败
- internal_error：其他意外错误

异步事件路径（Webhook 投递、媒体下载、注销）中的错误不会以异常形式抛出，
而是在发生处记录日志后吞掉。
"""


class GatewayError(Exception):
    """网关错误基类。"""

    kind: str = "internal_error"


class AlreadyExistsError(GatewayError):
    """同一用户的会话已在注册表中。"""

    kind = "already_exists"


class NotFoundError(GatewayError):
    """用户没有会话，或查找的对象不存在。"""

    kind = "not_found"


class NotReadyError(GatewayError):
    """会话尚未进入已连接状态。"""

    kind = "not_ready"


class AuthFailureError(GatewayError):
    """外部客户端拒绝了持久化凭据。"""

    kind = "auth_failure"


class TransportError(GatewayError):
    """消息发送或媒体下载失败。"""

    kind = "transport_error"


class InternalError(GatewayError):
    """未预期的内部错误。"""

    kind = "internal_error"


__all__ = [
    "GatewayError",
    "AlreadyExistsError",
    "NotFoundError",
    "NotReadyError",
    "AuthFailureError",
    "TransportError",
    "InternalError",
]
