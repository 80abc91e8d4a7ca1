"""
handx - tmux 会话网关

主要组件：
- protocol: 消息信封、载荷和错误码
- tmux: tmux 客户端与多路复用器桥接
- hub: WebSocket 服务器、连接中心、协议路由、配对令牌
- cli: 命令行入口和配对信息显示
- utils: 配置和日志
"""

__version__ = "1.0.0"

from . import protocol
from . import utils
from . import tmux
from . import hub

__all__ = [
    # 版本
    "__version__",
    # 子模块
    "protocol",
    "utils",
    "tmux",
    "hub",
]
