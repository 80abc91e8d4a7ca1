"""
tmux 多路复用器模块

- 命令行客户端
- 桥接层（标识解析与错误归类）
"""

from .client import TmuxClient, SessionRecord, WindowRecord, PaneRecord
from .bridge import Multiplexer, TmuxBridge, SUBMIT_KEY, normalize_session_name

__all__ = [
    "TmuxClient",
    "SessionRecord",
    "WindowRecord",
    "PaneRecord",
    "Multiplexer",
    "TmuxBridge",
    "SUBMIT_KEY",
    "normalize_session_name",
]
