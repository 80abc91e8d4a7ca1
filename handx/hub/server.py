"""Hub WebSocket 服务器"""

import asyncio
from typing import Optional
from urllib.parse import urlparse

import websockets

from ..protocol import TerminalOutputPayload
from ..tmux import Multiplexer, TmuxBridge, TmuxClient
from ..utils import GatewayConfig, get_logger
from .auth import TokenManager
from .client import ClientSession
from .manager import ConnectionHub
from .router import ProtocolRouter


class GatewayServer:
    """handx 网关服务器"""

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        multiplexer: Optional[Multiplexer] = None,
        token_manager: Optional[TokenManager] = None,
    ):
        self.config = config or GatewayConfig()

        # 核心组件
        self.token_manager = token_manager or TokenManager()
        self.multiplexer = multiplexer or TmuxBridge(
            TmuxClient(timeout=self.config.tmux_command_timeout),
            history_lines=self.config.tmux_history_lines,
        )
        self.hub = ConnectionHub()
        self.router = ProtocolRouter(
            self.multiplexer,
            self.token_manager,
            require_token=self.config.require_token,
        )

        # 服务器状态
        self.server = None
        self.running = False
        self._output_sequence = 0

        self.logger = get_logger("handx.hub.server")

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def port(self) -> int:
        return self.config.port

    async def start(self) -> None:
        """启动服务器"""
        if self.running:
            self.logger.warning("服务器已经在运行")
            return

        try:
            self.logger.info(f"启动 handx 网关: {self.host}:{self.port}{self.config.ws_path}")

            # 没有 Origin 头的客户端（原生移动端）也允许连接
            origins = list(self.config.allowed_origins) + [None]

            # 心跳由客户端会话自己管理
            self.server = await websockets.serve(
                self._handle_client,
                self.host,
                self.port,
                origins=origins,
                ping_interval=None,
                close_timeout=self.config.write_timeout,
            )

            self.token_manager.start_cleanup(self.config.token_cleanup_interval)

            self.running = True
            self.logger.info("handx 网关启动成功")

        except Exception as e:
            self.logger.error(f"启动服务器失败: {e}")
            raise

    async def stop(self) -> None:
        """停止服务器"""
        if not self.running:
            return

        self.logger.info("停止 handx 网关")
        self.running = False

        try:
            # 首先断开所有客户端连接
            await self.hub.close_all(code=1001, reason="Server shutdown")

            # 停止 WebSocket 服务器
            if self.server:
                self.server.close()
                await self.server.wait_closed()
                self.server = None

            await self.token_manager.stop_cleanup()
            self.logger.info("handx 网关已停止")

        except Exception as e:
            self.logger.error(f"停止服务器时出错: {e}")
        finally:
            self.running = False

    async def serve_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """运行直到 stop_event 被设置，然后停止服务器

        尚未启动时会先启动。
        """
        stop_event = stop_event or asyncio.Event()
        if not self.running:
            await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    def issue_token(self) -> str:
        """签发配对令牌（使用配置的有效期）"""
        return self.token_manager.issue(self.config.token_lifetime)

    def push_output(self, session_name: str, output: str) -> int:
        """向所有客户端推送终端输出

        Returns:
            成功投递的客户端数量
        """
        self._output_sequence += 1
        return self.hub.broadcast(
            TerminalOutputPayload(
                session_name=session_name,
                output=output,
                sequence=self._output_sequence,
            )
        )

    async def _handle_client(self, websocket) -> None:
        """处理客户端连接

        Args:
            websocket: WebSocket 连接
        """
        path = urlparse(websocket.request.path).path
        if path != self.config.ws_path:
            self.logger.warning(f"拒绝连接: 无效路径 {path}")
            await websocket.close(1008, "Invalid path")
            return

        client = ClientSession(
            websocket,
            self.hub,
            self.router,
            queue_size=self.config.send_queue_size,
            read_timeout=self.config.read_timeout,
            ping_interval=self.config.ping_interval,
            write_timeout=self.config.write_timeout,
        )

        # 先注册，再启动读写循环
        if not self.hub.register(client):
            await websocket.close(1011, "Registration failed")
            return

        try:
            await client.run()
        except Exception as e:
            self.logger.error(f"处理客户端 {client.client_id} 连接失败: {e}")
        finally:
            await client.shutdown()

    def get_stats(self) -> dict:
        """获取服务器统计信息

        Returns:
            统计信息字典
        """
        return {
            "server": {
                "running": self.running,
                "host": self.host,
                "port": self.port,
                "ws_path": self.config.ws_path,
            },
            "connections": self.hub.get_stats(),
            "router": self.router.get_stats(),
            "tokens": len(self.token_manager),
        }


async def start_gateway_server(config: Optional[GatewayConfig] = None) -> GatewayServer:
    """启动网关服务器

    Args:
        config: 网关配置

    Returns:
        网关服务器实例
    """
    server = GatewayServer(config)
    await server.start()
    return server
