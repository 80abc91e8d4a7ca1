"""Hub 连接中心

维护当前已连接客户端的注册表。所有方法都是同步的，只在事件循环线程中调用，
因此彼此之间天然串行，不需要额外加锁。
"""

import asyncio
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from ..protocol import Envelope, Payload, PAYLOAD_TYPES
from ..utils import get_logger

if TYPE_CHECKING:
    from .client import ClientSession


def _payload_type(payload: Payload):
    for message_type, payload_class in PAYLOAD_TYPES.items():
        if type(payload) is payload_class:
            return message_type
    raise ValueError(f"Cannot infer message type for {type(payload).__name__}")


class ConnectionHub:
    """连接中心"""

    def __init__(self):
        # 注册表：client_id -> ClientSession
        self._clients: Dict[str, "ClientSession"] = {}

        # 统计
        self._total_registered = 0
        self._total_evicted = 0
        self._total_broadcasts = 0

        self.logger = get_logger("handx.hub.manager")

    def register(self, client: "ClientSession") -> bool:
        """注册客户端

        注册后客户端被标记为已连接。已经注销过的客户端不能再次注册。

        Args:
            client: 客户端会话

        Returns:
            是否注册成功
        """
        if client.client_id in self._clients:
            self.logger.warning(f"客户端 {client.client_id} 已注册，忽略重复注册")
            return False
        if client.closed:
            self.logger.warning(f"客户端 {client.client_id} 已关闭，拒绝注册")
            return False

        self._clients[client.client_id] = client
        client.connected = True
        self._total_registered += 1

        self.logger.info(
            f"客户端连接: {client.client_id} ({client.remote_address}), "
            f"当前连接数 {len(self._clients)}"
        )
        return True

    def unregister(self, client: "ClientSession") -> bool:
        """注销客户端

        幂等：重复注销不会产生任何效果。注销会关闭客户端的发送队列，
        写循环发送完剩余消息后关闭连接。

        Args:
            client: 客户端会话

        Returns:
            是否移除了客户端
        """
        if self._clients.get(client.client_id) is not client:
            return False

        del self._clients[client.client_id]
        client.close_queue()

        self.logger.info(
            f"客户端断开: {client.client_id}, 当前连接数 {len(self._clients)}"
        )
        return True

    def broadcast(self, message: Union[Envelope, Payload]) -> int:
        """向所有客户端广播消息

        不会阻塞：发送队列已满的客户端会被丢弃本条消息并被移出注册表。

        Args:
            message: 信封或载荷（载荷会按其类型包装成信封）

        Returns:
            成功投递的客户端数量
        """
        if isinstance(message, Envelope):
            envelope = message
        else:
            envelope = Envelope(message_type=_payload_type(message), payload=message)

        frame = envelope.to_json()
        self._total_broadcasts += 1

        delivered = 0
        evicted: List["ClientSession"] = []
        for client in list(self._clients.values()):
            if client.enqueue(frame):
                delivered += 1
            else:
                evicted.append(client)

        for client in evicted:
            self.logger.warning(f"客户端 {client.client_id} 发送队列已满，断开连接")
            self._total_evicted += 1
            self.unregister(client)

        self.logger.debug(
            f"广播完成: {envelope.message_type.value}, 成功 {delivered}，剔除 {len(evicted)}"
        )
        return delivered

    def get_client(self, client_id: str) -> Optional["ClientSession"]:
        """获取客户端

        Args:
            client_id: 客户端ID

        Returns:
            客户端会话，如果不存在返回 None
        """
        return self._clients.get(client_id)

    def get_all_clients(self) -> Dict[str, "ClientSession"]:
        """获取所有客户端（副本）"""
        return self._clients.copy()

    async def close_all(self, code: int = 1001, reason: str = "Server shutdown") -> None:
        """断开所有客户端

        先从注册表移除，再关闭底层连接。
        """
        clients = list(self.get_all_clients().values())
        for client in clients:
            self.unregister(client)

        if clients:
            await asyncio.gather(
                *(client.close(code, reason) for client in clients),
                return_exceptions=True,
            )

    def get_stats(self) -> Dict[str, Any]:
        """获取连接统计

        Returns:
            统计信息字典
        """
        return {
            "total": len(self._clients),
            "authenticated": sum(1 for c in self._clients.values() if c.authenticated),
            "registered_total": self._total_registered,
            "evicted_total": self._total_evicted,
            "broadcasts": self._total_broadcasts,
            "clients": [c.get_info() for c in self._clients.values()],
        }

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._clients
