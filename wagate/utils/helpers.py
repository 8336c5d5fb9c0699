"""
工具函数集合 - wagate 项目全局通用的辅助函数。

函数分类：
- 路径管理：ensure_dir, get_data_path
- 标识处理：normalize_user_id, to_chat_id
"""

import re
from pathlib import Path

# WhatsApp 个人账号的地址后缀（如 15550001@c.us）
CHAT_ID_SUFFIX = "@c.us"

# 与 LocalAuth 的 clientId 约束一致
USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """获取 wagate 数据目录（~/.wagate）。自动创建不存在的目录。"""
    return ensure_dir(Path.home() / ".wagate")


def normalize_user_id(user_id: int | str) -> int | str:
    """
    统一用户标识的类型并校验字符集。

    HTTP 路径参数、JSON 请求体和磁盘目录名中的用户 ID 类型各不相同
    （"7"、7、"user-7" 中解析出的 "7"），规范的十进制数字串统一转为 int，
    保证注册表中同一个用户只对应一个键。带前导零的数字串（如 "007"）保持为字符串，
    以便与磁盘上的目录名一一对应。

    用户 ID 会拼进凭据目录名，只允许字母、数字、下划线和连字符。

    参数:
        user_id: 原始用户标识

    返回:
        规范数字串返回 int，否则返回去除首尾空白的字符串

    异常:
        ValueError: 标识为空或包含不允许的字符
    """
    if isinstance(user_id, bool):
        raise ValueError(f"Invalid user id: {user_id!r}")
    if isinstance(user_id, int):
        return user_id
    value = str(user_id).strip()
    if not value:
        raise ValueError("user id must not be empty")
    if not USER_ID_PATTERN.match(value):
        raise ValueError(f"Invalid user id: {value!r} (allowed: letters, digits, '_' and '-')")
    if value.isdigit() and str(int(value)) == value:
        return int(value)
    return value


def to_chat_id(recipient: str) -> str:
    """
    将手机号规范化为 WhatsApp 要求的地址格式。

    已经带有 @域名 的地址（如 @c.us、@g.us 群组）原样返回，
    否则追加个人账号后缀 @c.us。

    参数:
        recipient: 手机号（需包含国家码）或完整地址

    返回:
        形如 "15550001@c.us" 的地址
    """
    recipient = str(recipient).strip()
    if "@" in recipient:
        return recipient
    return f"{recipient}{CHAT_ID_SUFFIX}"

