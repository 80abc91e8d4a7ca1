"""多路复用器桥接层

Multiplexer 定义网关依赖的多路复用器能力；TmuxBridge 在 TmuxClient 之上实现它，
负责会话/窗口标识的解析以及错误的归类。

面板和窗口的解析规则统一为：带 active 标记的优先，否则取列出顺序中的第一个。
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from ..exceptions import (
    LastWindowError,
    PaneNotFoundError,
    SessionAlreadyExistsError,
    SessionNotFoundError,
    TmuxCommandError,
    TmuxError,
    WindowNotFoundError,
)
from ..protocol import Session, Window, now_millis
from ..utils import get_logger
from .client import PaneRecord, SessionRecord, TmuxClient, WindowRecord

# 提交命令的控制序列（Ctrl+M，即回车）
SUBMIT_KEY = "C-m"
DEFAULT_HISTORY_LINES = 10000


def normalize_session_name(name: str) -> str:
    """按 tmux 的规则规范化会话名

    tmux 会把会话名中的 "." 和 ":" 替换为 "_"（它们在目标语法中有特殊含义），
    冲突检查和返回的会话名都使用替换后的名字。
    """
    return name.replace(".", "_").replace(":", "_")


class Multiplexer(ABC):
    """多路复用器能力接口"""

    @abstractmethod
    async def list_sessions(self) -> List[Session]:
        """列出会话；没有任何会话时返回空列表"""

    @abstractmethod
    async def create_session(self, name: str) -> Session:
        """创建会话；名字冲突时抛出 SessionAlreadyExistsError"""

    @abstractmethod
    async def kill_session(self, name: str) -> None:
        """销毁会话；不存在时抛出 SessionNotFoundError"""

    @abstractmethod
    async def rename_session(self, old_name: str, new_name: str) -> str:
        """重命名会话，返回实际使用的新名字"""

    @abstractmethod
    async def execute_command(
        self, session_name: str, command: str, window_index: Optional[int] = None
    ) -> None:
        """发送命令文本并提交"""

    @abstractmethod
    async def send_text(
        self, session_name: str, text: str, window_index: Optional[int] = None
    ) -> None:
        """发送文本但不提交"""

    @abstractmethod
    async def capture_output(
        self, session_name: str, window_index: Optional[int] = None
    ) -> str:
        """捕获面板内容（保留转义序列）"""

    @abstractmethod
    async def list_windows(self, session_name: str) -> List[Window]:
        """列出窗口"""

    @abstractmethod
    async def create_window(
        self, session_name: str, window_name: Optional[str] = None
    ) -> Window:
        """创建窗口，索引由多路复用器分配"""

    @abstractmethod
    async def close_window(self, session_name: str, window_index: int) -> None:
        """关闭窗口；不允许关闭最后一个窗口"""

    @abstractmethod
    async def switch_window(self, session_name: str, window_index: int) -> str:
        """切换窗口，返回窗口名字"""


def _pick_active(items):
    """active 标记优先，否则取第一个"""
    for item in items:
        if item.active:
            return item
    return items[0] if items else None


def _to_window(session_name: str, record: WindowRecord) -> Window:
    return Window(
        id=f"window-{session_name}-{record.index}",
        name=record.name,
        index=record.index,
        active=record.active,
        pane_id=record.pane_id,
    )


class TmuxBridge(Multiplexer):
    """基于 tmux 的多路复用器实现"""

    def __init__(
        self,
        client: Optional[TmuxClient] = None,
        history_lines: int = DEFAULT_HISTORY_LINES,
    ):
        self.client = client or TmuxClient()
        self.history_lines = history_lines if history_lines > 0 else DEFAULT_HISTORY_LINES
        self.logger = get_logger("handx.tmux.bridge")

    # 会话管理

    async def list_sessions(self) -> List[Session]:
        records = await self.client.list_sessions()

        sessions = []
        for record in records:
            try:
                windows = await self._windows(record.name)
            except TmuxError as e:
                # 会话可能在两次调用之间消失
                self.logger.debug(f"列出会话 {record.name} 的窗口失败: {e}")
                windows = []
            sessions.append(self._to_session(record, windows))
        return sessions

    async def create_session(self, name: str) -> Session:
        name = normalize_session_name(name)

        # 先自行检查冲突，以便给出明确的错误类型
        if await self._find_session(name) is not None:
            raise SessionAlreadyExistsError(name)

        await self.client.new_session(name)
        self.logger.info(f"创建会话: {name}")

        record = await self._find_session(name)
        windows = await self._windows(name)
        if record is None:
            return Session(
                id=f"session-{name}",
                name=name,
                windows=windows,
                created_at=now_millis(),
                attached=False,
            )
        return self._to_session(record, windows)

    async def kill_session(self, name: str) -> None:
        await self._require_session(name)
        await self.client.kill_session(name)
        self.logger.info(f"销毁会话: {name}")

    async def rename_session(self, old_name: str, new_name: str) -> str:
        new_name = normalize_session_name(new_name)
        await self._require_session(old_name)
        if await self._find_session(new_name) is not None:
            raise SessionAlreadyExistsError(new_name)

        await self.client.rename_session(old_name, new_name)
        self.logger.info(f"重命名会话: {old_name} -> {new_name}")
        return new_name

    # 输入输出

    async def execute_command(
        self, session_name: str, command: str, window_index: Optional[int] = None
    ) -> None:
        _, pane = await self._resolve_pane(session_name, window_index)

        # 两次发送不是原子的：第一次失败时不会发送提交序列
        await self.client.send_keys(pane.id, command, literal=True)
        await self.client.send_keys(pane.id, SUBMIT_KEY)

    async def send_text(
        self, session_name: str, text: str, window_index: Optional[int] = None
    ) -> None:
        _, pane = await self._resolve_pane(session_name, window_index)
        await self.client.send_keys(pane.id, text, literal=True)

    async def capture_output(
        self, session_name: str, window_index: Optional[int] = None
    ) -> str:
        _, pane = await self._resolve_pane(session_name, window_index)

        try:
            return await self.client.capture_pane(pane.id, self.history_lines)
        except TmuxCommandError as e:
            self.logger.warning(f"捕获历史输出失败，退回到可见区域捕获: {e}")
            return await self.client.capture_pane(pane.id)

    # 窗口管理

    async def list_windows(self, session_name: str) -> List[Window]:
        await self._require_session(session_name)
        return await self._windows(session_name)

    async def create_window(
        self, session_name: str, window_name: Optional[str] = None
    ) -> Window:
        await self._require_session(session_name)

        index = await self.client.new_window(session_name, window_name)
        for window in await self._windows(session_name):
            if window.index == index:
                self.logger.info(f"创建窗口: {session_name}:{index} ({window.name})")
                return window

        raise TmuxError(f"failed to find newly created window {index}")

    async def close_window(self, session_name: str, window_index: int) -> None:
        await self._require_session(session_name)
        records = await self.client.list_windows(session_name)

        self._find_window(session_name, records, window_index)
        if len(records) == 1:
            raise LastWindowError(session_name)

        await self.client.kill_window(session_name, window_index)
        self.logger.info(f"关闭窗口: {session_name}:{window_index}")

    async def switch_window(self, session_name: str, window_index: int) -> str:
        await self._require_session(session_name)
        records = await self.client.list_windows(session_name)

        target = self._find_window(session_name, records, window_index)
        await self.client.select_window(session_name, window_index)
        return target.name

    # 内部方法

    async def _find_session(self, name: str) -> Optional[SessionRecord]:
        for record in await self.client.list_sessions():
            if record.name == name:
                return record
        return None

    async def _require_session(self, name: str) -> SessionRecord:
        record = await self._find_session(name)
        if record is None:
            raise SessionNotFoundError(name)
        return record

    async def _windows(self, session_name: str) -> List[Window]:
        records = await self.client.list_windows(session_name)
        return [_to_window(session_name, record) for record in records]

    @staticmethod
    def _find_window(
        session_name: str, records: List[WindowRecord], window_index: int
    ) -> WindowRecord:
        for record in records:
            if record.index == window_index:
                return record
        raise WindowNotFoundError(session_name, window_index)

    async def _resolve_pane(
        self, session_name: str, window_index: Optional[int]
    ) -> Tuple[WindowRecord, PaneRecord]:
        """解析目标窗口和面板

        指定了窗口索引时使用该窗口，否则取活动窗口（没有则取第一个）；
        面板同理。
        """
        await self._require_session(session_name)
        records = await self.client.list_windows(session_name)

        if window_index is not None:
            window = self._find_window(session_name, records, window_index)
        else:
            window = _pick_active(records)
            if window is None:
                raise PaneNotFoundError(session_name)

        pane = _pick_active(await self.client.list_panes(session_name, window.index))
        if pane is None:
            raise PaneNotFoundError(session_name)
        return window, pane

    @staticmethod
    def _to_session(record: SessionRecord, windows: List[Window]) -> Session:
        return Session(
            id=f"session-{record.name}",
            name=record.name,
            windows=windows,
            created_at=record.created * 1000 if record.created else now_millis(),
            attached=record.attached,
        )
