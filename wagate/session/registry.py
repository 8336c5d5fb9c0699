"""
会话注册表模块 - 多用户会话的唯一所有者。

SessionRegistry 是进程内唯一的会话表（user_id → Session），负责：
1. 保证同一用户最多只有一个会话（创建时"检查 + 注册"在同一把用户锁下完成）
2. 创建、查询、枚举、销毁会话
3. 进程启动时扫描凭据目录恢复会话，进程退出时尽力断开所有会话

【并发模型】
- 变更操作（create_session / destroy_session）按用户加 asyncio.Lock，
  同一用户的初始化与销毁互斥，不同用户之间互不等待；无人持有的锁随即移除
- 查询操作是纯读取，不加锁、不修改任何状态
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from loguru import logger

from wagate.errors import AlreadyExistsError, GatewayError, InternalError
from wagate.session.session import ClientFactory, CodeRenderer, Session
from wagate.session.storage import CredentialStore
from wagate.utils.helpers import normalize_user_id
from wagate.webhook.notifier import WebhookNotifier


class SessionRegistry:
    """
    会话注册表。

    属性:
        store: 凭据存储
        notifier: Webhook 通知器（所有会话共享）
        client_factory: 客户端工厂
        sessions: 已注册会话 {user_id: Session}
    """

    def __init__(
        self,
        store: CredentialStore,
        notifier: WebhookNotifier,
        client_factory: ClientFactory,
        code_renderer: CodeRenderer | None = None,
        startup_grace_s: float = 1.0,
        media_fetch_timeout_s: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self.client_factory = client_factory
        self.code_renderer = code_renderer
        self.startup_grace_s = startup_grace_s
        self.media_fetch_timeout_s = media_fetch_timeout_s
        self.http_client = http_client
        self.sessions: dict[int | str, Session] = {}
        self._locks: dict[int | str, asyncio.Lock] = {}
        self._lock_refs: dict[int | str, int] = {}

    @asynccontextmanager
    async def _user_lock(self, user_id: int | str) -> AsyncIterator[None]:
        """持有用户锁；没有任何操作持有或等待时移除该锁，避免锁表无限增长。"""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._lock_refs[user_id] = self._lock_refs.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_refs[user_id] -= 1
            if self._lock_refs[user_id] == 0:
                del self._lock_refs[user_id]
                del self._locks[user_id]

    def _build_session(self, user_id: int | str) -> Session:
        return Session(
            user_id,
            store=self.store,
            notifier=self.notifier,
            client_factory=self.client_factory,
            code_renderer=self.code_renderer,
            startup_grace_s=self.startup_grace_s,
            media_fetch_timeout_s=self.media_fetch_timeout_s,
            http_client=self.http_client,
        )

    async def create_session(self, user_id: int | str) -> Session:
        """
        为用户创建会话并启动客户端。

        参数:
            user_id: 用户标识

        返回:
            新创建的会话

        异常:
            AlreadyExistsError: 该用户已有会话
            InternalError: 客户端启动过程中出现意外错误（会话不会被保留）
        """
        user_id = normalize_user_id(user_id)
        async with self._user_lock(user_id):
            if user_id in self.sessions:
                raise AlreadyExistsError(f"Session already exists for user {user_id}")

            session = self._build_session(user_id)
            self.sessions[user_id] = session

            try:
                await session.initialize()
            except Exception as e:
                logger.error(f"Failed to initialize session for user {user_id}: {e}")
                self.sessions.pop(user_id, None)
                await session.disconnect()
                if isinstance(e, GatewayError):
                    raise
                raise InternalError(f"Failed to initialize session for user {user_id}: {e}") from e

            logger.info(f"Session created for user {user_id}")
            return session

    async def destroy_session(self, user_id: int | str, clear_credentials: bool = False) -> None:
        """
        销毁用户会话（从不抛出异常，调用方总可以安全地重试初始化）。

        已注册时：断开会话后从注册表移除。
        未注册但 clear_credentials 为 True 时：仍然清除磁盘上的遗留凭据
        （进程崩溃后可能只剩文件而没有内存中的会话）。

        参数:
            user_id: 用户标识
            clear_credentials: 是否注销并删除凭据
        """
        try:
            user_id = normalize_user_id(user_id)
        except ValueError as e:
            logger.warning(f"Ignoring destroy for invalid user id {user_id!r}: {e}")
            return

        async with self._user_lock(user_id):
            session = self.sessions.get(user_id)
            try:
                if session is not None:
                    await session.disconnect(clear_credentials)
                elif clear_credentials:
                    logger.info(f"No active session for user {user_id}, clearing leftover credentials")
                    self.store.clear(user_id)
            except Exception as e:
                logger.error(f"Error destroying session for user {user_id}: {e}")
            finally:
                if session is not None and self.sessions.get(user_id) is session:
                    del self.sessions[user_id]

    async def restore_sessions(self) -> list[int | str]:
        """
        从凭据目录恢复会话（进程启动时执行一次）。

        单个用户恢复失败只记录日志，不影响其他用户。

        返回:
            成功恢复的用户标识列表
        """
        user_ids = self.store.discover()
        logger.info(f"Found {len(user_ids)} persisted session(s) in {self.store.root}")

        restored: list[int | str] = []
        for user_id in user_ids:
            if user_id in self.sessions:
                continue
            try:
                await self.create_session(user_id)
                restored.append(user_id)
                logger.info(f"Restored session for user {user_id}")
            except Exception as e:
                logger.error(f"Failed to restore session for user {user_id}: {e}")
        return restored

    async def drain(self) -> None:
        """断开并移除所有会话（保留磁盘凭据，下次启动时可恢复）。"""
        user_ids = self.get_all_sessions()
        logger.info(f"Disconnecting {len(user_ids)} active session(s)...")
        for user_id in user_ids:
            await self.destroy_session(user_id)
            logger.info(f"Disconnected user {user_id}")

    def get_session(self, user_id: int | str) -> Session | None:
        return self.sessions.get(normalize_user_id(user_id))

    def has_session(self, user_id: int | str) -> bool:
        return normalize_user_id(user_id) in self.sessions

    def get_all_sessions(self) -> list[int | str]:
        """获取所有已注册会话的用户标识。"""
        return list(self.sessions.keys())

    def get_session_status(self, user_id: int | str) -> dict[str, Any]:
        """
        获取会话状态（纯读取）。

        返回:
            {"exists": bool, "connected": bool}
        """
        session = self.get_session(user_id)
        if session is None:
            return {"exists": False, "connected": False}
        return {"exists": True, "connected": session.is_ready}
