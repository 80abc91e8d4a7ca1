"""
Hub 网关模块

连接管理和消息路由：
- 服务器实现
- 协议路由
- 连接中心与客户端会话
- 配对令牌
"""

from .server import GatewayServer, start_gateway_server
from .router import ProtocolRouter, classify_error
from .manager import ConnectionHub
from .client import ClientSession
from .auth import TokenManager, TokenInfo

__all__ = [
    "GatewayServer",
    "start_gateway_server",
    "ProtocolRouter",
    "classify_error",
    "ConnectionHub",
    "ClientSession",
    "TokenManager",
    "TokenInfo",
]
