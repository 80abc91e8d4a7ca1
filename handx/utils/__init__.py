"""handx 工具模块

提供基础设施支持：
- 配置管理 (GatewayConfig)
- 日志系统 (get_logger, configure_logging)
"""

from .config import GatewayConfig
from .logger import get_logger, configure_logging

__all__ = [
    # 配置管理
    "GatewayConfig",
    # 日志系统
    "get_logger",
    "configure_logging",
]
