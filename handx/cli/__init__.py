"""
handx 命令行入口

- 网关启动与信号处理
- 配对信息显示
"""

from .pairing import get_connection_url, get_local_ip, show_pairing

__all__ = ["get_connection_url", "get_local_ip", "show_pairing"]
