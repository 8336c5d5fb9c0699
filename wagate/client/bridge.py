"""
WhatsApp 桥接客户端实现 - 通过 WebSocket 驱动 Node.js 桥接服务中的 whatsapp-web.js 实例。

架构：
    Python(Session) <-> BridgeClient <-> WebSocket <-> Node.js Bridge <-> WhatsApp Web

每个会话建立一条独立的 WebSocket 连接，连接建立后发送 init 指令，
桥接服务据此启动一个绑定到 clientId/dataPath 凭据目录的浏览器实例。

消息协议（JSON 文本帧）：
- Python → Bridge：
  - auth：认证令牌（可选）
  - init：{clientId, dataPath}，启动客户端
  - 请求类：send / sendMedia / getContact / downloadMedia / logout / destroy，
    均带 requestId，桥接服务以 response 回应
- Bridge → Python：
  - qr：{qr} 需要扫码
  - ready：{info} 登录成功
  - message：{message} 收到消息
  - disconnected：{reason} 连接断开
  - auth_failure：{error} 凭据失效
  - response：{requestId, ok, result | error}
  - error：{error} 桥接服务报告的错误

【设计要点】
读取循环只负责解析帧：response 帧立即完成对应的 Future，事件帧放入事件队列，
由独立的派发任务按顺序调用处理器。这样处理器内部可以安全地发起请求
（例如 message 处理器中调用 download_media），不会阻塞读取循环。
"""

import asyncio
import json
import uuid
from typing import Any

from loguru import logger

from wagate.client.base import (
    EVENT_AUTH_FAILURE,
    EVENT_DISCONNECTED,
    EVENT_MESSAGE,
    EVENT_QR,
    EVENT_READY,
    BaseChatClient,
    ClientInfo,
    Contact,
    IncomingMessage,
    MediaPayload,
    SentMessage,
)
from wagate.errors import TransportError


class BridgeClient(BaseChatClient):
    """
    基于 WebSocket 桥接服务的 WhatsApp 客户端。

    属性:
        bridge_url: 桥接服务 WebSocket 地址
        bridge_token: 桥接认证令牌
        connect_timeout: 建立连接的超时（秒）
        request_timeout: 单次请求的超时（秒）
    """

    def __init__(
        self,
        client_id: str,
        data_path: str,
        bridge_url: str,
        bridge_token: str = "",
        connect_timeout: float = 15.0,
        request_timeout: float = 60.0,
    ):
        super().__init__(client_id, data_path)
        self.bridge_url = bridge_url
        self.bridge_token = bridge_token
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self._ws = None                                     # WebSocket 连接对象
        self._reader: asyncio.Task | None = None            # 读取循环任务
        self._dispatcher: asyncio.Task | None = None        # 事件派发任务
        self._events: asyncio.Queue[tuple[str, tuple[Any, ...]]] = asyncio.Queue()
        self._pending: dict[str, asyncio.Future] = {}       # requestId -> 等待中的 Future
        self._closing = False                               # 主动关闭标志（不再上报断开事件）

    async def initialize(self) -> None:
        """
        连接桥接服务并发送 init 指令。

        连接或发送失败时抛出异常；登录进展通过事件通知。
        """
        import websockets

        logger.info(f"Connecting {self.client_id} to WhatsApp bridge at {self.bridge_url}...")
        self._closing = False
        self._ws = await asyncio.wait_for(
            websockets.connect(self.bridge_url, max_size=None),
            timeout=self.connect_timeout,
        )

        if self.bridge_token:
            await self._ws.send(json.dumps({"type": "auth", "token": self.bridge_token}))
        await self._ws.send(json.dumps({
            "type": "init",
            "clientId": self.client_id,
            "dataPath": self.data_path,
        }))

        self._dispatcher = asyncio.create_task(self._dispatch_events())
        self._reader = asyncio.create_task(self._listen())
        logger.info(f"Bridge client {self.client_id} started")

    async def send_message(self, chat_id: str, content: str) -> SentMessage:
        # sendSeen=false：新版 WhatsApp Web 的已读回执接口不稳定
        result = await self._request("send", to=chat_id, text=content, sendSeen=False)
        return _parse_sent(result)

    async def send_media(self, chat_id: str, media: MediaPayload, caption: str | None = None) -> SentMessage:
        result = await self._request(
            "sendMedia",
            to=chat_id,
            media=media.to_dict(),
            caption=caption,
            sendSeen=False,
        )
        return _parse_sent(result)

    async def get_contact(self, chat_id: str) -> Contact:
        result = await self._request("getContact", contactId=chat_id) or {}
        return Contact(
            phone=result.get("user") or chat_id.split("@")[0],
            name=result.get("name") or result.get("pushname"),
            is_my_contact=bool(result.get("isMyContact", False)),
            is_blocked=bool(result.get("isBlocked", False)),
        )

    async def download_media(self, message: IncomingMessage) -> MediaPayload:
        result = await self._request("downloadMedia", messageId=message.id)
        if not result:
            raise TransportError(f"No media returned for message {message.id}")
        return MediaPayload(
            mimetype=result.get("mimetype", "application/octet-stream"),
            data=result.get("data", ""),
            filename=result.get("filename"),
        )

    async def logout(self) -> None:
        await self._request("logout")

    async def destroy(self) -> None:
        """请求桥接服务关闭浏览器，然后关闭 WebSocket。"""
        self._closing = True
        if self._ws is None:
            return
        await self._request("destroy")
        await self._close()

    async def kill(self) -> None:
        """直接中断底层 TCP 连接；桥接服务在连接丢失时负责强制关闭浏览器。"""
        self._closing = True
        ws, self._ws = self._ws, None
        self._cancel_tasks()
        if ws is not None:
            transport = getattr(ws, "transport", None)
            if transport is not None:
                transport.abort()
        self._fail_pending("bridge connection killed")

    async def _close(self) -> None:
        ws, self._ws = self._ws, None
        self._cancel_tasks()
        if ws is not None:
            await ws.close()
        self._fail_pending("bridge connection closed")

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in (self._reader, self._dispatcher):
            if task and task is not current and not task.done():
                task.cancel()
        self._reader = None
        self._dispatcher = None

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportError(reason))
        self._pending.clear()

    async def _request(self, request_type: str, **params: Any) -> Any:
        """
        发送带 requestId 的请求并等待对应的 response 帧。

        异常:
            TransportError: 未连接、发送失败、超时或桥接服务返回错误
        """
        if self._ws is None:
            raise TransportError("WhatsApp bridge not connected")

        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._ws.send(json.dumps({"type": request_type, "requestId": request_id, **params}))
            return await asyncio.wait_for(future, timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Bridge request '{request_type}' timed out") from e
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"Bridge request '{request_type}' failed: {e}") from e
        finally:
            self._pending.pop(request_id, None)

    async def _listen(self) -> None:
        """读取循环：持续解析桥接服务发来的帧，直到连接关闭。"""
        ws = self._ws
        try:
            async for raw in ws:
                try:
                    self._handle_bridge_message(raw)
                except Exception as e:
                    logger.error(f"Error handling bridge message for {self.client_id}: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"WhatsApp bridge connection error for {self.client_id}: {e}")

        # 连接已结束（非主动关闭时上报断开事件）
        self._fail_pending("bridge connection closed")
        if not self._closing:
            logger.warning(f"WhatsApp bridge connection lost for {self.client_id}")
            self._events.put_nowait((EVENT_DISCONNECTED, ("BRIDGE_CLOSED",)))

    async def _dispatch_events(self) -> None:
        """事件派发循环：按到达顺序逐个调用处理器。"""
        while True:
            event, args = await self._events.get()
            await self._emit(event, *args)

    def _handle_bridge_message(self, raw: str | bytes) -> None:
        """
        处理从桥接服务收到的一帧。

        参数:
            raw: 原始 JSON 字符串
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from bridge: {str(raw)[:100]}")
            return

        msg_type = data.get("type")

        if msg_type == "response":
            future = self._pending.get(data.get("requestId", ""))
            if future is None or future.done():
                return
            if data.get("ok", True):
                future.set_result(data.get("result"))
            else:
                future.set_exception(TransportError(data.get("error") or "bridge request failed"))

        elif msg_type == "qr":
            self._events.put_nowait((EVENT_QR, (data.get("qr", ""),)))

        elif msg_type == "ready":
            self.info = _parse_info(data.get("info") or {})
            self._events.put_nowait((EVENT_READY, ()))

        elif msg_type == "message":
            self._events.put_nowait((EVENT_MESSAGE, (_parse_message(data.get("message") or {}),)))

        elif msg_type == "disconnected":
            self._events.put_nowait((EVENT_DISCONNECTED, (data.get("reason", "UNKNOWN"),)))

        elif msg_type == "auth_failure":
            self._events.put_nowait((EVENT_AUTH_FAILURE, (data.get("error") or "authentication failed",)))

        elif msg_type == "error":
            logger.error(f"WhatsApp bridge error for {self.client_id}: {data.get('error')}")


def _parse_info(info: dict[str, Any]) -> ClientInfo:
    wid = info.get("wid") or {}
    return ClientInfo(
        user=str(wid.get("user") or info.get("user") or ""),
        platform=info.get("platform"),
        pushname=info.get("pushname"),
    )


def _parse_message(data: dict[str, Any]) -> IncomingMessage:
    msg_id = data.get("id")
    if isinstance(msg_id, dict):
        msg_id = msg_id.get("id")
    return IncomingMessage(
        id=str(msg_id or ""),
        from_=data.get("from", ""),
        to=data.get("to", ""),
        body=data.get("body", ""),
        type=data.get("type", "chat"),
        timestamp=data.get("timestamp"),
        has_media=bool(data.get("hasMedia", False)),
        is_forwarded=bool(data.get("isForwarded", False)),
        from_me=bool(data.get("fromMe", False)),
    )


def _parse_sent(result: Any) -> SentMessage:
    result = result or {}
    msg_id = result.get("id")
    if isinstance(msg_id, dict):
        msg_id = msg_id.get("id")
    return SentMessage(id=str(msg_id or ""), timestamp=result.get("timestamp"))
