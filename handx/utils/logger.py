"""handx 日志系统

本模块提供统一的日志接口，支持标准日志和富文本日志（rich）。
只有根日志器 "handx" 配置 handler，各模块的子日志器通过继承获得输出。
"""

import logging
import sys
from typing import Optional

from rich.logging import RichHandler

ROOT_LOGGER_NAME = "handx"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(
    level: Optional[str] = "info",
    log_file: Optional[str] = None,
    enable_rich: Optional[bool] = True,
) -> logging.Logger:
    """设置根日志器

    支持控制台输出和文件输出。重复调用会替换已有的 handler。

    Args:
        level: 日志级别
        log_file: 日志文件路径，None 表示不写文件
        enable_rich: 是否启用 rich 日志

    Returns:
        配置好的根日志器
    """
    level = (level or "INFO").upper()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    # 清除现有处理器
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if enable_rich:
        rich_handler = RichHandler(
            rich_tracebacks=True, show_time=True, show_level=True, show_path=False
        )
        rich_handler.setLevel(level)
        logger.addHandler(rich_handler)
    else:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        logger.addHandler(console_handler)

    # 文件处理器（如果指定了日志文件）
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        logger.addHandler(file_handler)

    # 不向 Python 根日志器重复输出
    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """获取日志器

    Args:
        name: 日志器名称，应以 "handx" 开头以继承根日志器配置

    Returns:
        日志器实例
    """
    return logging.getLogger(name)
