"""tmux 命令行客户端

通过 asyncio 子进程调用 tmux 可执行文件，把输出解析成简单的记录。
每次调用都有超时限制，超时、非零退出码和找不到可执行文件都视为失败。
"""

import asyncio
import shutil
from dataclasses import dataclass
from typing import List, Optional

from ..exceptions import TmuxCommandError
from ..utils import get_logger

FIELD_SEP = "\t"

# tmux 在没有会话时的典型报错
_NO_SERVER_MARKERS = (
    "no server running",
    "no sessions",
    "error connecting to",
    "failed to connect to server",
)


@dataclass
class SessionRecord:
    id: str
    name: str
    created: int  # 秒级时间戳
    attached: bool


@dataclass
class WindowRecord:
    id: str
    index: int
    name: str
    active: bool
    pane_id: str  # 窗口当前活动面板


@dataclass
class PaneRecord:
    id: str
    window_index: int
    active: bool


def session_target(name: str) -> str:
    """会话目标，"=" 前缀要求精确匹配会话名"""
    return f"={name}"


def window_target(name: str, index: int) -> str:
    return f"={name}:{index}"


class TmuxClient:
    """tmux 客户端"""

    def __init__(self, binary: str = "tmux", timeout: float = 10.0):
        self.binary = binary
        self.timeout = timeout
        self.logger = get_logger("handx.tmux.client")

    def is_available(self) -> bool:
        """检查 tmux 可执行文件是否存在"""
        return shutil.which(self.binary) is not None

    async def run(self, *args: str) -> str:
        """执行一条 tmux 命令

        Args:
            *args: tmux 子命令及参数

        Returns:
            标准输出文本

        Raises:
            TmuxCommandError: 命令失败或超时
        """
        self.logger.debug(f"执行 tmux 命令: {' '.join(args)}")
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TmuxCommandError(args, f"failed to start tmux: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise TmuxCommandError(
                args, f"tmux {args[0]} timed out after {self.timeout}s"
            )

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise TmuxCommandError(
                args,
                message or f"tmux {args[0]} exited with {process.returncode}",
                returncode=process.returncode,
            )

        return stdout.decode("utf-8", errors="replace")

    @staticmethod
    def _lines(output: str) -> List[str]:
        return [line for line in output.splitlines() if line]

    async def list_sessions(self) -> List[SessionRecord]:
        """列出所有会话，tmux 服务器未运行时返回空列表"""
        fmt = FIELD_SEP.join(
            [
                "#{session_id}",
                "#{session_created}",
                "#{session_attached}",
                "#{session_name}",
            ]
        )
        try:
            output = await self.run("list-sessions", "-F", fmt)
        except TmuxCommandError as e:
            if any(marker in e.message.lower() for marker in _NO_SERVER_MARKERS):
                return []
            raise

        records = []
        for line in self._lines(output):
            session_id, created, attached, name = line.split(FIELD_SEP, 3)
            records.append(
                SessionRecord(
                    id=session_id,
                    name=name,
                    created=int(created or 0),
                    attached=int(attached or 0) > 0,
                )
            )
        return records

    async def list_windows(self, session_name: str) -> List[WindowRecord]:
        """列出会话中的窗口（tmux 的列出顺序）"""
        fmt = FIELD_SEP.join(
            [
                "#{window_id}",
                "#{window_index}",
                "#{window_active}",
                "#{pane_id}",
                "#{window_name}",
            ]
        )
        output = await self.run(
            "list-windows", "-t", session_target(session_name), "-F", fmt
        )

        records = []
        for line in self._lines(output):
            window_id, index, active, pane_id, name = line.split(FIELD_SEP, 4)
            records.append(
                WindowRecord(
                    id=window_id,
                    index=int(index),
                    name=name,
                    active=active == "1",
                    pane_id=pane_id,
                )
            )
        return records

    async def list_panes(self, session_name: str, window_index: int) -> List[PaneRecord]:
        """列出窗口中的面板"""
        fmt = FIELD_SEP.join(["#{pane_id}", "#{window_index}", "#{pane_active}"])
        output = await self.run(
            "list-panes", "-t", window_target(session_name, window_index), "-F", fmt
        )

        records = []
        for line in self._lines(output):
            pane_id, index, active = line.split(FIELD_SEP, 2)
            records.append(
                PaneRecord(id=pane_id, window_index=int(index), active=active == "1")
            )
        return records

    async def new_session(self, name: str) -> None:
        """创建分离模式的新会话"""
        await self.run("new-session", "-d", "-s", name)

    async def kill_session(self, name: str) -> None:
        await self.run("kill-session", "-t", session_target(name))

    async def rename_session(self, old_name: str, new_name: str) -> None:
        await self.run("rename-session", "-t", session_target(old_name), new_name)

    async def new_window(self, session_name: str, window_name: Optional[str] = None) -> int:
        """创建新窗口

        窗口索引由 tmux 分配；没有名字时由 tmux 使用默认名字。

        Returns:
            新窗口的索引
        """
        # 结尾的 ":" 让 tmux 在会话中选择下一个可用索引
        args = [
            "new-window",
            "-t",
            f"{session_target(session_name)}:",
            "-P",
            "-F",
            "#{window_index}",
        ]
        if window_name:
            args.extend(["-n", window_name])
        output = await self.run(*args)
        try:
            return int(output.strip())
        except ValueError:
            raise TmuxCommandError(args, f"unexpected new-window output: {output!r}")

    async def kill_window(self, session_name: str, window_index: int) -> None:
        await self.run("kill-window", "-t", window_target(session_name, window_index))

    async def select_window(self, session_name: str, window_index: int) -> None:
        await self.run(
            "select-window", "-t", window_target(session_name, window_index)
        )

    async def send_keys(self, pane_id: str, keys: str, literal: bool = False) -> None:
        """向面板发送按键

        Args:
            pane_id: 面板 ID（如 %3）
            keys: 文本或按键名
            literal: 为 True 时按字面文本发送（-l）
        """
        args = ["send-keys", "-t", pane_id]
        if literal:
            args.append("-l")
        args.append(keys)
        await self.run(*args)

    async def capture_pane(self, pane_id: str, history_lines: Optional[int] = None) -> str:
        """捕获面板内容，保留颜色转义序列（-e）

        Args:
            pane_id: 面板 ID
            history_lines: 向回追溯的历史行数，None 表示只捕获可见区域
        """
        args = ["capture-pane", "-p", "-e", "-t", pane_id]
        if history_lines is not None:
            args.extend(["-J", "-S", f"-{history_lines}"])
        return await self.run(*args)
