"""配对信息显示

打印移动端/网页端连接网关所需的 URL。
"""

import socket
from typing import Optional
from urllib.parse import urlencode

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

_WILDCARD_HOSTS = ("0.0.0.0", "", "::")


def get_local_ip() -> str:
    """获取第一个非回环的 IPv4 地址，找不到时返回 127.0.0.1"""
    # UDP connect 不会真正发送数据包，只用来让内核选出出口地址
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("10.255.255.255", 1))
            ip = sock.getsockname()[0]
            if not ip.startswith("127."):
                return ip
    except OSError:
        pass

    try:
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            ip = info[4][0]
            if not ip.startswith("127."):
                return ip
    except OSError:
        pass

    return "127.0.0.1"


def display_host(host: str) -> str:
    """把监听地址转换成客户端可以访问的地址"""
    if host in _WILDCARD_HOSTS:
        return get_local_ip()
    return host


def get_connection_url(
    host: str, port: int, token: Optional[str] = None, path: str = "/ws"
) -> str:
    """生成连接 URL

    Args:
        host: 监听地址（0.0.0.0 会被替换为本机地址）
        port: 监听端口
        token: 配对令牌，None 表示不带令牌
        path: WebSocket 路径

    Returns:
        形如 ws://192.168.1.5:8080/ws?token=... 的 URL
    """
    url = f"ws://{display_host(host)}:{port}{path}"
    if token:
        url += "?" + urlencode({"token": token})
    return url


def show_pairing(
    url: str,
    token: Optional[str] = None,
    expires_in: Optional[float] = None,
    console: Optional[Console] = None,
) -> None:
    """显示配对面板"""
    console = console or Console()

    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan")
    table.add_column(style="green")
    table.add_row("连接地址", url)
    if token:
        table.add_row("配对令牌", token)
        if expires_in:
            table.add_row("有效期", f"{int(expires_in // 60)} 分钟")
    else:
        table.add_row("认证", "[yellow]已关闭[/yellow]")

    console.print(
        Panel(table, title="📱 handx 配对信息", subtitle="在客户端中输入以上地址")
    )
