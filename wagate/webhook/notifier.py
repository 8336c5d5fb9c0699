"""
Webhook 通知器 - 将会话事件异步推送到业务后端。

采用"每用户一个队列 + 一个投递任务"的模型（与消息总线的出站分发器同构）：

  Session 状态处理器 → notify()（非阻塞入队）→ 用户队列 → 投递任务 → HTTP POST

【核心约定】
- 同一用户的通知按产生顺序逐条尝试投递；不同用户互不影响
- 每次投递受 timeout 约束，超时、网络错误、非 2xx 响应都只记录日志后丢弃
- notify() 从不阻塞、从不抛出，慢速后端不会拖住会话的事件处理
- 投递任务在用户队列清空后退出，不会为已销毁的会话常驻
"""

import asyncio

import httpx
from loguru import logger

from wagate.webhook.events import WebhookEvent


class WebhookNotifier:
    """
    Fire-and-forget 的 Webhook 投递器。

    属性:
        base_url: 后端基础地址（为空时所有通知直接丢弃）
        api_key: 随 X-API-Key 请求头发送的共享密钥
        timeout: 单次投递的超时（秒）
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._queues: dict[int | str, asyncio.Queue[WebhookEvent]] = {}
        self._workers: dict[int | str, asyncio.Task] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def notify(self, event: WebhookEvent) -> None:
        """
        将通知放入所属用户的队列（非阻塞）。

        参数:
            event: 待投递的通知
        """
        if not self.enabled:
            logger.debug(f"Webhook disabled, dropping {event.event} for user {event.user_id}")
            return

        queue = self._queues.get(event.user_id)
        if queue is None:
            queue = self._queues[event.user_id] = asyncio.Queue()
        queue.put_nowait(event)

        worker = self._workers.get(event.user_id)
        if worker is None or worker.done():
            self._workers[event.user_id] = asyncio.create_task(self._run_worker(event.user_id, queue))

    async def deliver(self, event: WebhookEvent) -> bool:
        """
        投递一条通知（单次尝试，不重试）。

        返回:
            True 表示后端返回 2xx，失败时返回 False（不抛出异常）
        """
        url = f"{self.base_url}{event.endpoint}"
        headers = {"Content-Type": "application/json", "X-API-Key": self.api_key}
        try:
            client = self._get_client()
            response = await asyncio.wait_for(
                client.post(url, json=event.data, headers=headers, timeout=self.timeout),
                timeout=self.timeout,
            )
            response.raise_for_status()
            logger.debug(f"Webhook {event.event} delivered for user {event.user_id}")
            return True
        except asyncio.TimeoutError:
            logger.error(f"Error sending webhook to {event.endpoint}: timed out after {self.timeout}s")
        except Exception as e:
            logger.error(f"Error sending webhook to {event.endpoint}: {e}")
        return False

    async def flush(self, timeout: float | None = None) -> bool:
        """
        等待所有已入队的通知完成投递尝试（用于优雅停机）。

        参数:
            timeout: 最长等待时间（秒），None 表示一直等待

        返回:
            True 表示全部通知都已尝试投递，超时返回 False
        """
        queues = list(self._queues.values())
        if not queues:
            return True
        try:
            await asyncio.wait_for(asyncio.gather(*(q.join() for q in queues)), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            pending = sum(q.qsize() for q in queues)
            logger.warning(f"Webhook flush timed out after {timeout}s, {pending} notification(s) still queued")
            return False

    async def close(self) -> None:
        """停止所有投递任务并关闭 HTTP 客户端。"""
        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        for worker in workers:
            try:
                await worker
            except asyncio.CancelledError:
                pass
        self._workers.clear()
        self._queues.clear()

        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def _run_worker(self, user_id: int | str, queue: asyncio.Queue[WebhookEvent]) -> None:
        """
        投递循环：逐条取出该用户的通知并投递，单条失败不影响后续通知。

        队列清空后移除该用户的队列与任务并退出，下一次 notify() 会重新创建。
        """
        while True:
            event = await queue.get()
            try:
                await self.deliver(event)
            finally:
                queue.task_done()

            # 检查与移除之间没有 await，不会与 notify() 交错
            if queue.empty():
                if self._queues.get(user_id) is queue:
                    del self._queues[user_id]
                    self._workers.pop(user_id, None)
                return
