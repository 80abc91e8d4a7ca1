"""测试用的内存替身：tmux 客户端和 WebSocket 连接"""

import asyncio
import json
from types import SimpleNamespace
from typing import Dict, List, Optional

from websockets.exceptions import ConnectionClosedOK

from handx.exceptions import TmuxCommandError
from handx.tmux import PaneRecord, SessionRecord, WindowRecord


class FakeTmuxClient:
    """内存中的 tmux 模型，接口与 TmuxClient 一致"""

    def __init__(self):
        self.sessions: Dict[str, dict] = {}
        self.keys: List[tuple] = []
        self.captures: List[tuple] = []
        self.screens: Dict[str, str] = {}
        self.fail_history = False
        self.fail_send = False
        self._next_id = 0

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}{self._next_id}"

    def _session(self, name: str) -> dict:
        if name not in self.sessions:
            raise TmuxCommandError(["-t", name], f"can't find session: {name}")
        return self.sessions[name]

    def _window(self, name: str, index: int) -> dict:
        for window in self._session(name)["windows"]:
            if window["index"] == index:
                return window
        raise TmuxCommandError(["-t", f"{name}:{index}"], f"can't find window: {index}")

    def _new_window(self, name: str = "bash") -> dict:
        pane = {"id": self._new_id("%"), "active": True}
        return {"id": self._new_id("@"), "name": name, "active": True, "panes": [pane]}

    def add_pane(self, session_name: str, index: int, active: bool = False) -> str:
        window = self._window(session_name, index)
        if active:
            for pane in window["panes"]:
                pane["active"] = False
        pane = {"id": self._new_id("%"), "active": active}
        window["panes"].append(pane)
        return pane["id"]

    # TmuxClient 接口

    async def list_sessions(self) -> List[SessionRecord]:
        return [
            SessionRecord(id=s["id"], name=name, created=s["created"], attached=False)
            for name, s in self.sessions.items()
        ]

    async def list_windows(self, session_name: str) -> List[WindowRecord]:
        return [
            WindowRecord(
                id=w["id"],
                index=w["index"],
                name=w["name"],
                active=w["active"],
                pane_id=next((p["id"] for p in w["panes"] if p["active"]), ""),
            )
            for w in self._session(session_name)["windows"]
        ]

    async def list_panes(self, session_name: str, window_index: int) -> List[PaneRecord]:
        window = self._window(session_name, window_index)
        return [
            PaneRecord(id=p["id"], window_index=window_index, active=p["active"])
            for p in window["panes"]
        ]

    async def new_session(self, name: str) -> None:
        # 与 tmux 一样替换会话名中的 "." 和 ":"
        name = name.replace(".", "_").replace(":", "_")
        if name in self.sessions:
            raise TmuxCommandError(["new-session"], f"duplicate session: {name}")
        window = self._new_window()
        window["index"] = 0
        self.sessions[name] = {
            "id": self._new_id("$"),
            "created": 1700000000,
            "windows": [window],
        }

    async def kill_session(self, name: str) -> None:
        self._session(name)
        del self.sessions[name]

    async def rename_session(self, old_name: str, new_name: str) -> None:
        new_name = new_name.replace(".", "_").replace(":", "_")
        self.sessions[new_name] = self.sessions.pop(old_name)

    async def new_window(self, session_name: str, window_name: Optional[str] = None) -> int:
        windows = self._session(session_name)["windows"]
        for window in windows:
            window["active"] = False
        window = self._new_window(window_name or "bash")
        window["index"] = max(w["index"] for w in windows) + 1 if windows else 0
        windows.append(window)
        return window["index"]

    async def kill_window(self, session_name: str, window_index: int) -> None:
        windows = self._session(session_name)["windows"]
        window = self._window(session_name, window_index)
        windows.remove(window)
        if window["active"] and windows:
            windows[0]["active"] = True

    async def select_window(self, session_name: str, window_index: int) -> None:
        target = self._window(session_name, window_index)
        for window in self._session(session_name)["windows"]:
            window["active"] = window is target

    async def send_keys(self, pane_id: str, keys: str, literal: bool = False) -> None:
        if self.fail_send:
            raise TmuxCommandError(["send-keys"], "send-keys failed")
        self.keys.append((pane_id, keys, literal))

    async def capture_pane(self, pane_id: str, history_lines: Optional[int] = None) -> str:
        self.captures.append((pane_id, history_lines))
        if history_lines is not None and self.fail_history:
            raise TmuxCommandError(["capture-pane"], "history unavailable")
        return self.screens.get(pane_id, "")


class FakeWebSocket:
    """内存中的 WebSocket 连接"""

    def __init__(
        self, path: str = "/ws", auto_pong: bool = True, block_send: bool = False
    ):
        self.request = SimpleNamespace(path=path)
        self.remote_address = ("127.0.0.1", 50000)
        self.auto_pong = auto_pong
        self.sent: List[str] = []
        self.pings = 0
        self.close_code: Optional[int] = None
        self.close_reason = ""
        self._incoming: asyncio.Queue = asyncio.Queue()
        self._closed = asyncio.Event()
        # 未设置时 send 会一直阻塞，用于模拟慢客户端
        self._send_gate = asyncio.Event()
        if not block_send:
            self._send_gate.set()

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    def feed(self, frame) -> None:
        """模拟客户端发来一帧"""
        if not isinstance(frame, (str, bytes)):
            frame = json.dumps(frame)
        self._incoming.put_nowait(frame)

    def messages(self) -> List[dict]:
        return [json.loads(frame) for frame in self.sent]

    async def recv(self):
        if not self._incoming.empty():
            return self._incoming.get_nowait()
        if self.is_closed:
            raise ConnectionClosedOK(None, None)

        getter = asyncio.ensure_future(self._incoming.get())
        closer = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closer.cancel()
            if not getter.done():
                getter.cancel()

        if getter.done() and not getter.cancelled():
            return getter.result()
        raise ConnectionClosedOK(None, None)

    async def send(self, frame: str) -> None:
        await self._send_gate.wait()
        if self.is_closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(frame)

    async def ping(self):
        if self.is_closed:
            raise ConnectionClosedOK(None, None)
        self.pings += 1
        pong = asyncio.get_running_loop().create_future()
        if self.auto_pong:
            pong.set_result(0.0)
        return pong

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.is_closed:
            return
        self.close_code = code
        self.close_reason = reason
        self._closed.set()
        self._send_gate.set()


def queued_messages(client) -> List[dict]:
    """取出客户端发送队列中的全部消息"""
    return [json.loads(frame) for frame in client._drain()]
