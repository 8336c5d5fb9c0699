"""
凭据存储模块 - 管理每个用户在磁盘上的会话凭据目录。

【存储布局】
    <sessions_dir>/session-user-<user_id>/

目录由 whatsapp-web.js 的 LocalAuth 策略写入（clientId = "user-<user_id>"），
同一命名约定也用于进程启动时的会话发现：扫描 sessions_dir 下所有
session-user-* 目录即可得到需要恢复的用户列表。

【锁文件清理】
浏览器在 profile 目录中留下 SingletonLock 等锁文件，其中记录了主机名。
容器崩溃或非正常退出后主机名变化，浏览器会认为"另一台机器正在使用该 profile"
而拒绝启动，因此每次启动客户端之前都要递归清理这些锁文件。
"""

import os
import re
import shutil
from pathlib import Path

from loguru import logger

from wagate.utils.helpers import ensure_dir, normalize_user_id

# 会话目录命名约定
SESSION_DIR_PREFIX = "session-"
CLIENT_ID_PREFIX = "user-"
SESSION_DIR_PATTERN = re.compile(r"^session-user-(.+)$")

# 浏览器遗留的锁文件名
LOCK_FILE_NAMES = {"SingletonLock", "SingletonSocket", "SingletonCookie", "lockfile", "LOCK"}


def _is_lock_file(name: str) -> bool:
    return name in LOCK_FILE_NAMES or name.endswith(".lock")


class CredentialStore:
    """
    会话凭据目录管理器。

    属性:
        root: 会话根目录（所有用户的凭据目录都在其下）
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def client_id(self, user_id: int | str) -> str:
        """获取用户的凭据命名空间（如 "user-7"），传给客户端的 LocalAuth。"""
        return f"{CLIENT_ID_PREFIX}{normalize_user_id(user_id)}"

    def session_path(self, user_id: int | str) -> Path:
        """
        获取用户的凭据目录路径（如 storage/sessions/session-user-7）。

        异常:
            ValueError: 用户标识非法，或解析后的路径不在会话根目录之下
        """
        path = self.root / f"{SESSION_DIR_PREFIX}{self.client_id(user_id)}"
        # 按字面规范化比较，不跟随软链接
        if os.path.dirname(os.path.abspath(path)) != os.path.abspath(self.root):
            raise ValueError(f"Session path for user {user_id!r} escapes {self.root}")
        return path

    def exists(self, user_id: int | str) -> bool:
        return self.session_path(user_id).is_dir()

    def discover(self) -> list[int | str]:
        """
        扫描会话根目录，返回所有可恢复的用户标识。

        根目录不存在时自动创建并返回空列表。

        返回:
            按目录名排序的用户标识列表（规范数字标识为 int，与目录名一一对应）
        """
        ensure_dir(self.root)

        user_ids: list[int | str] = []
        for path in sorted(self.root.iterdir()):
            if not path.is_dir():
                continue
            match = SESSION_DIR_PATTERN.match(path.name)
            if not match:
                continue
            try:
                user_ids.append(normalize_user_id(match.group(1)))
            except ValueError:
                logger.warning(f"Skipping session directory with invalid user id: {path.name}")
        return user_ids

    def cleanup_locks(self, user_id: int | str) -> int:
        """
        递归删除用户凭据目录中遗留的浏览器锁文件。

        单个文件删除失败只记录日志，不影响其他文件。

        返回:
            成功删除的锁文件数量
        """
        session_path = self.session_path(user_id)
        if not session_path.is_dir():
            logger.debug(f"Session path does not exist yet: {session_path}")
            return 0

        removed = self._clean_directory(session_path)
        if removed:
            logger.info(f"Lock file cleanup for user {user_id}: {removed} file(s) removed")
        return removed

    def _clean_directory(self, directory: Path) -> int:
        removed = 0
        try:
            entries = list(directory.iterdir())
        except OSError as e:
            logger.debug(f"Cannot read {directory}: {e}")
            return 0

        for entry in entries:
            if _is_lock_file(entry.name):
                try:
                    # SingletonLock 通常是指向 "<主机名>-<pid>" 的悬空软链接
                    if entry.is_dir() and not entry.is_symlink():
                        shutil.rmtree(entry)
                    else:
                        entry.unlink()
                    logger.debug(f"Removed lock: {entry}")
                    removed += 1
                except OSError as e:
                    logger.warning(f"Failed to remove lock {entry}: {e}")
            elif entry.is_dir() and not entry.is_symlink():
                removed += self._clean_directory(entry)
        return removed

    def clear(self, user_id: int | str) -> bool:
        """
        删除用户的整个凭据目录，下次初始化需要重新扫码。

        删除失败只记录日志，不抛出异常。

        返回:
            True 表示目录存在且已删除
        """
        session_path = self.session_path(user_id)
        if not session_path.exists():
            return False
        try:
            shutil.rmtree(session_path)
            logger.info(f"Cleared session files for user {user_id} at {session_path}")
            return True
        except OSError as e:
            logger.error(f"Error clearing session files for user {user_id}: {e}")
            return False
