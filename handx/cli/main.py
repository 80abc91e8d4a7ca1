"""handx 网关启动入口"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from .. import __version__
from ..exceptions import ConfigurationError
from ..hub import GatewayServer
from ..tmux import TmuxClient
from ..utils import GatewayConfig, configure_logging, get_logger
from .pairing import get_connection_url, show_pairing


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="handx", description="handx tmux 会话网关"
    )
    parser.add_argument("--host", help="监听地址 (默认 0.0.0.0)")
    parser.add_argument("--port", type=int, help="监听端口 (默认 8080)")
    parser.add_argument("--ws-path", dest="ws_path", help="WebSocket 路径 (默认 /ws)")
    parser.add_argument(
        "--allowed-origin",
        dest="allowed_origins",
        action="append",
        help="允许的浏览器 Origin，可重复指定",
    )
    parser.add_argument(
        "--token-lifetime", dest="token_lifetime", type=float, help="令牌有效期（秒）"
    )
    parser.add_argument(
        "--no-auth",
        dest="require_token",
        action="store_false",
        default=None,
        help="关闭令牌认证",
    )
    parser.add_argument("--tmux-timeout", dest="tmux_command_timeout", type=float)
    parser.add_argument("--history-lines", dest="tmux_history_lines", type=int)
    parser.add_argument("--log-level", dest="log_level", help="日志级别")
    parser.add_argument("--log-file", dest="log_file", help="日志文件")
    parser.add_argument(
        "--no-rich",
        dest="enable_rich_logging",
        action="store_false",
        default=None,
        help="使用普通日志输出",
    )
    parser.add_argument("--version", action="version", version=f"handx {__version__}")
    return parser


def load_config(argv: Optional[List[str]] = None) -> GatewayConfig:
    """按 命令行参数 > 环境变量 > 默认值 的优先级加载配置"""
    args = build_parser().parse_args(argv)
    config = GatewayConfig.from_env()
    config.update(**vars(args))
    config.validate()
    return config


async def run_gateway(config: GatewayConfig) -> None:
    """运行网关直到收到停止信号"""
    logger = get_logger("handx.cli")
    server = GatewayServer(config)

    token = server.issue_token() if config.require_token else None
    url = get_connection_url(config.host, config.port, token, config.ws_path)

    stop_event = asyncio.Event()

    def signal_handler():
        logger.warning("收到停止信号，正在关闭网关...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in [signal.SIGINT, signal.SIGTERM]:
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            logger.warning(f"当前平台不支持信号处理（{sig}），请使用 Ctrl+C 退出")

    # 先启动再显示配对信息，端口被占用时不会显示无效的链接
    await server.start()
    show_pairing(url, token, config.token_lifetime if token else None)
    await server.serve_forever(stop_event)


def run(argv: Optional[List[str]] = None) -> int:
    """命令行主函数"""
    try:
        config = load_config(argv)
    except ConfigurationError as e:
        print(f"配置错误: {e.message}", file=sys.stderr)
        return 2

    configure_logging(config.log_level, config.log_file, config.enable_rich_logging)
    logger = get_logger("handx.cli")

    if not TmuxClient().is_available():
        logger.error("找不到 tmux 可执行文件，请先安装 tmux")
        return 1

    try:
        asyncio.run(run_gateway(config))
    except KeyboardInterrupt:
        logger.info("再见!")
    except OSError as e:
        logger.error(f"网关启动失败: {e}")
        return 1
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
