"""
工具函数模块 - 提供 wagate 项目全局通用的辅助函数。

本模块包含：
- ensure_dir：确保目录存在
- normalize_user_id：统一用户标识类型
- to_chat_id：规范化 WhatsApp 收件人地址
"""

from wagate.utils.helpers import ensure_dir, get_data_path, normalize_user_id, to_chat_id

__all__ = ["ensure_dir", "get_data_path", "normalize_user_id", "to_chat_id"]
