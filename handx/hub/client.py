"""客户端会话

每个 WebSocket 连接对应一个 ClientSession，包含两个任务：

- 读循环：带截止时间地接收帧，交给路由器处理
- 写循环：按 FIFO 顺序发送队列中的消息，空闲时发送 ping

两个循环任一结束都会调用 shutdown()，由它统一注销并关闭连接。
"""

import asyncio
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union
from urllib.parse import parse_qs, urlparse

from websockets.exceptions import ConnectionClosed

from ..protocol import Envelope
from ..utils import get_logger

if TYPE_CHECKING:
    from .manager import ConnectionHub
    from .router import ProtocolRouter

DEFAULT_QUEUE_SIZE = 256
DEFAULT_READ_TIMEOUT = 60.0
DEFAULT_PING_INTERVAL = 54.0
DEFAULT_WRITE_TIMEOUT = 10.0


class ReadTimeout(Exception):
    """读截止时间已过"""


def _query_token(websocket: Any) -> Optional[str]:
    """从连接 URL 的查询参数中取出 token"""
    request = getattr(websocket, "request", None)
    path = getattr(request, "path", None)
    if not path:
        return None
    values = parse_qs(urlparse(path).query).get("token")
    return values[0] if values else None


class ClientSession:
    """客户端会话"""

    def __init__(
        self,
        websocket: Any,
        hub: "ConnectionHub",
        router: "ProtocolRouter",
        client_id: Optional[str] = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        ping_interval: float = DEFAULT_PING_INTERVAL,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    ):
        self.websocket = websocket
        self.hub = hub
        self.router = router
        self.client_id = client_id or f"client-{uuid.uuid4().hex[:12]}"

        self.read_timeout = read_timeout
        self.ping_interval = ping_interval
        self.write_timeout = write_timeout

        # 由 Hub 在注册/注销时维护
        self.connected = False
        self.authenticated = False
        self.client_type = ""
        self.client_version = ""
        self.query_token = _query_token(websocket)
        self.remote_address = getattr(websocket, "remote_address", None)

        self._outbound: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._queue_closed = asyncio.Event()
        self._shutdown = False

        loop = asyncio.get_running_loop()
        self._loop = loop
        self.connected_at = loop.time()
        self.read_deadline = self.connected_at + read_timeout

        self.messages_received = 0
        self.messages_sent = 0
        self.messages_dropped = 0

        self.logger = get_logger("handx.hub.client")

    @property
    def closed(self) -> bool:
        """发送队列是否已关闭"""
        return self._queue_closed.is_set()

    def touch(self) -> None:
        """刷新读截止时间"""
        self.read_deadline = self._loop.time() + self.read_timeout

    # 发送

    def enqueue(self, frame: str) -> bool:
        """非阻塞地把已编码的帧放入发送队列

        Returns:
            False 表示连接已断开或队列已满，消息被丢弃
        """
        if not self.connected or self.closed:
            return False
        try:
            self._outbound.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    def send(self, envelope: Union[Envelope, str]) -> bool:
        """发送消息（单播）

        Args:
            envelope: 信封或已编码的 JSON 文本

        Returns:
            是否成功入队
        """
        frame = envelope if isinstance(envelope, str) else envelope.to_json()
        if self.enqueue(frame):
            return True

        self.messages_dropped += 1
        if self.connected and not self.closed:
            self.logger.warning(f"客户端 {self.client_id} 发送队列已满，丢弃消息")
        else:
            self.logger.debug(f"客户端 {self.client_id} 已断开，丢弃消息")
        return False

    def close_queue(self) -> None:
        """关闭发送队列，之后的 enqueue 都会失败"""
        self.connected = False
        self._queue_closed.set()

    async def _next_outbound(self, timeout: float) -> Optional[str]:
        """等待下一条待发送的帧

        Returns:
            帧文本；超时返回 None

        Raises:
            EOFError: 队列已关闭且已取空
        """
        if not self._outbound.empty():
            return self._outbound.get_nowait()
        if self.closed:
            raise EOFError

        getter = asyncio.ensure_future(self._outbound.get())
        closer = asyncio.ensure_future(self._queue_closed.wait())
        try:
            await asyncio.wait(
                {getter, closer},
                timeout=max(timeout, 0),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            closer.cancel()
            if not getter.done():
                getter.cancel()

        if getter.done() and not getter.cancelled():
            return getter.result()
        if not self._outbound.empty():
            return self._outbound.get_nowait()
        if self.closed:
            raise EOFError
        return None

    def _drain(self) -> List[str]:
        frames = []
        while not self._outbound.empty():
            frames.append(self._outbound.get_nowait())
        return frames

    # 生命周期

    async def run(self) -> None:
        """运行读写循环，直到连接结束"""
        reader = asyncio.create_task(self.read_loop())
        writer = asyncio.create_task(self.write_loop())
        try:
            await asyncio.gather(reader, writer)
        finally:
            for task in (reader, writer):
                if not task.done():
                    task.cancel()

    async def read_loop(self) -> None:
        """读循环"""
        try:
            while True:
                frame = await self._recv()
                self.touch()
                self.messages_received += 1
                await self.router.handle_frame(self, frame)
        except ConnectionClosed:
            self.logger.debug(f"客户端 {self.client_id} 连接已关闭")
        except ReadTimeout:
            self.logger.warning(f"客户端 {self.client_id} 读超时，断开连接")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"客户端 {self.client_id} 读循环出错: {e}")
        finally:
            await self.shutdown()

    async def _recv(self) -> Union[str, bytes]:
        while True:
            remaining = self.read_deadline - self._loop.time()
            if remaining <= 0:
                raise ReadTimeout()
            try:
                return await asyncio.wait_for(self.websocket.recv(), timeout=remaining)
            except asyncio.TimeoutError:
                # 等待期间收到 pong 会推迟截止时间
                if self._loop.time() < self.read_deadline:
                    continue
                raise ReadTimeout()

    async def write_loop(self) -> None:
        """写循环"""
        next_ping = self._loop.time() + self.ping_interval
        try:
            while True:
                try:
                    frame = await self._next_outbound(next_ping - self._loop.time())
                except EOFError:
                    await self._close_socket(1000, "")
                    return

                if frame is not None:
                    # 已经在队列中的消息一起发送，每条仍是独立的帧
                    for item in [frame] + self._drain():
                        await self._write(item)

                if self._loop.time() >= next_ping:
                    await self._ping()
                    next_ping = self._loop.time() + self.ping_interval
        except ConnectionClosed:
            self.logger.debug(f"客户端 {self.client_id} 写入时连接已关闭")
        except asyncio.TimeoutError:
            self.logger.warning(f"客户端 {self.client_id} 写超时，断开连接")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"客户端 {self.client_id} 写循环出错: {e}")
        finally:
            await self.shutdown()

    async def _write(self, frame: str) -> None:
        await asyncio.wait_for(self.websocket.send(frame), timeout=self.write_timeout)
        self.messages_sent += 1

    async def _ping(self) -> None:
        pong_waiter = await asyncio.wait_for(
            self.websocket.ping(), timeout=self.write_timeout
        )
        pong_waiter.add_done_callback(self._on_pong)

    def _on_pong(self, future: asyncio.Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self.touch()

    async def shutdown(self) -> None:
        """结束会话（幂等）

        读循环、写循环和 Hub 剔除最终都会汇合到这里。
        """
        if self._shutdown:
            return
        self._shutdown = True

        self.hub.unregister(self)
        self.close_queue()
        await self._close_socket(1000, "")

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """关闭底层连接"""
        self.close_queue()
        await self._close_socket(code, reason)

    async def _close_socket(self, code: int, reason: str) -> None:
        try:
            await self.websocket.close(code, reason)
        except Exception as e:
            self.logger.debug(f"关闭客户端 {self.client_id} 连接失败: {e}")

    def get_info(self) -> Dict[str, Any]:
        """获取会话信息"""
        return {
            "client_id": self.client_id,
            "remote_address": str(self.remote_address),
            "authenticated": self.authenticated,
            "client_type": self.client_type,
            "client_version": self.client_version,
            "connected": self.connected,
            "queued": self._outbound.qsize(),
            "messages_received": self.messages_received,
            "messages_sent": self.messages_sent,
            "messages_dropped": self.messages_dropped,
        }
