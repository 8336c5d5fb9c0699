"""
wagate - 多会话 WhatsApp 网关

模块概述：
    本文件是 wagate 包的入口文件（__init__.py），定义了包的元信息。
    wagate 为多个终端用户分别托管长期在线的 WhatsApp Web 会话：
    每个用户一个会话，扫码登录后凭据持久化到磁盘，进程重启后自动恢复，
    会话事件通过 Webhook 推送给外部业务后端，后端通过命令接口反向驱动会话。

    整个网关的核心功能包括：
    - 多会话生命周期管理（创建、查询、恢复、销毁）
    - 会话状态机（未初始化 → 等待扫码 → 已连接 → 已断开/错误）
    - Webhook 事件推送（二维码、连接、消息、断开、认证失败）
    - 命令接口（初始化、发送消息、批量发送、发送媒体、状态查询、断开）
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "📲"
