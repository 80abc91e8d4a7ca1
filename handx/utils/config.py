"""handx 配置管理

本模块提供统一的配置管理接口，支持环境变量、默认值和运行时配置。
配置优先级：命令行参数 > 环境变量 > 默认值
"""

import os
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from ..exceptions import InvalidConfigurationError


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default, cast):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return cast(value)
    except ValueError:
        raise InvalidConfigurationError(name, value)


@dataclass
class GatewayConfig:
    """handx 网关配置类

    包含网关所有组件的配置选项。
    """

    # 服务器配置
    host: str = "0.0.0.0"
    port: int = 8080
    ws_path: str = "/ws"
    allowed_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:3000"]
    )

    # 安全配置
    require_token: bool = True
    token_lifetime: float = 3600.0  # 1 小时
    token_cleanup_interval: float = 300.0  # 5 分钟

    # 连接配置
    read_timeout: float = 60.0
    ping_interval: float = 54.0  # 必须小于 read_timeout
    write_timeout: float = 10.0
    send_queue_size: int = 256

    # tmux 配置
    tmux_history_lines: int = 10000
    tmux_command_timeout: float = 10.0

    # 日志配置
    log_level: str = "INFO"
    log_file: Optional[str] = None
    enable_rich_logging: bool = True

    # 自定义配置
    custom: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """从环境变量创建配置

        读取环境变量并创建配置实例。环境变量格式：HANDX_<配置名>

        Returns:
            从环境变量读取的配置实例
        """
        config = cls()

        # 服务器配置
        config.host = os.getenv("HANDX_HOST", config.host)
        config.port = _env_number("HANDX_PORT", config.port, int)
        config.ws_path = os.getenv("HANDX_WS_PATH", config.ws_path)
        origins = os.getenv("HANDX_ALLOWED_ORIGINS")
        if origins is not None:
            config.allowed_origins = [
                origin.strip() for origin in origins.split(",") if origin.strip()
            ]

        # 安全配置
        config.require_token = _env_bool("HANDX_REQUIRE_TOKEN", config.require_token)
        config.token_lifetime = _env_number(
            "HANDX_TOKEN_LIFETIME", config.token_lifetime, float
        )
        config.token_cleanup_interval = _env_number(
            "HANDX_TOKEN_CLEANUP_INTERVAL", config.token_cleanup_interval, float
        )

        # 连接配置
        config.read_timeout = _env_number(
            "HANDX_READ_TIMEOUT", config.read_timeout, float
        )
        config.ping_interval = _env_number(
            "HANDX_PING_INTERVAL", config.ping_interval, float
        )
        config.write_timeout = _env_number(
            "HANDX_WRITE_TIMEOUT", config.write_timeout, float
        )
        config.send_queue_size = _env_number(
            "HANDX_SEND_QUEUE_SIZE", config.send_queue_size, int
        )

        # tmux 配置
        config.tmux_history_lines = _env_number(
            "HANDX_TMUX_HISTORY_LINES", config.tmux_history_lines, int
        )
        config.tmux_command_timeout = _env_number(
            "HANDX_TMUX_COMMAND_TIMEOUT", config.tmux_command_timeout, float
        )

        # 日志配置
        config.log_level = os.getenv("HANDX_LOG_LEVEL", config.log_level)
        config.log_file = os.getenv("HANDX_LOG_FILE", config.log_file)
        config.enable_rich_logging = _env_bool(
            "HANDX_ENABLE_RICH_LOGGING", config.enable_rich_logging
        )

        config.validate()
        return config

    def validate(self) -> None:
        """校验配置项之间的约束

        Raises:
            InvalidConfigurationError: 配置值无效时
        """
        if not 0 < self.port < 65536:
            raise InvalidConfigurationError("port", str(self.port))
        if self.token_lifetime <= 0:
            raise InvalidConfigurationError("token_lifetime", str(self.token_lifetime))
        if self.token_cleanup_interval <= 0:
            raise InvalidConfigurationError(
                "token_cleanup_interval", str(self.token_cleanup_interval)
            )
        if self.ping_interval >= self.read_timeout:
            raise InvalidConfigurationError("ping_interval", str(self.ping_interval))
        if self.send_queue_size <= 0:
            raise InvalidConfigurationError(
                "send_queue_size", str(self.send_queue_size)
            )
        if self.tmux_history_lines <= 0:
            raise InvalidConfigurationError(
                "tmux_history_lines", str(self.tmux_history_lines)
            )
        if not self.ws_path.startswith("/"):
            raise InvalidConfigurationError("ws_path", self.ws_path)

    def update(self, **kwargs) -> None:
        """更新配置项

        值为 None 的项会被忽略，便于直接传入命令行参数。

        Args:
            **kwargs: 要更新的配置项
        """
        for key, value in kwargs.items():
            if value is None:
                continue
            if hasattr(self, key):
                setattr(self, key, value)
            else:
                self.custom[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """获取配置项

        Args:
            key: 配置项名称
            default: 默认值

        Returns:
            配置项的值
        """
        if hasattr(self, key):
            return getattr(self, key)
        return self.custom.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典

        Returns:
            配置的字典表示
        """
        result = {
            # 服务器配置
            "host": self.host,
            "port": self.port,
            "ws_path": self.ws_path,
            "allowed_origins": list(self.allowed_origins),
            # 安全配置
            "require_token": self.require_token,
            "token_lifetime": self.token_lifetime,
            "token_cleanup_interval": self.token_cleanup_interval,
            # 连接配置
            "read_timeout": self.read_timeout,
            "ping_interval": self.ping_interval,
            "write_timeout": self.write_timeout,
            "send_queue_size": self.send_queue_size,
            # tmux 配置
            "tmux_history_lines": self.tmux_history_lines,
            "tmux_command_timeout": self.tmux_command_timeout,
            # 日志配置
            "log_level": self.log_level,
            "log_file": self.log_file,
            "enable_rich_logging": self.enable_rich_logging,
        }

        # 添加自定义配置
        result.update(self.custom)
        return result
