"""handx 消息格式定义

本模块定义了网关协议的消息结构：外层信封 Envelope，以及每种消息类型对应的载荷。
载荷的结构完全由信封的 type 决定，解码分两步进行：先解析通用信封，
再按 type 对应的载荷类解析 payload。
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

from .types import MessageType, ErrorCode
from .exceptions import (
    MessageFormatException,
    SerializationException,
    UnknownMessageTypeException,
    ValidationException,
)


def _require(data: Dict[str, Any], key: str, expected: type) -> Any:
    """读取必需字段并检查类型"""
    if key not in data or data[key] is None:
        raise ValidationException(f"missing field: {key}")
    return _check(key, data[key], expected)


def _optional(data: Dict[str, Any], key: str, expected: type, default: Any = None) -> Any:
    """读取可选字段并检查类型"""
    value = data.get(key)
    if value is None:
        return default
    return _check(key, value, expected)


def _check(key: str, value: Any, expected: type) -> Any:
    # bool 是 int 的子类，窗口索引不接受布尔值
    if expected is int and isinstance(value, bool):
        raise ValidationException(f"field {key} must be int")
    if not isinstance(value, expected):
        raise ValidationException(f"field {key} must be {expected.__name__}")
    return value


def now_millis() -> int:
    """当前时间（毫秒时间戳）"""
    return int(time.time() * 1000)


# === 多路复用器实体 ===


@dataclass
class Window:
    """tmux 窗口"""

    id: str
    name: str
    index: int
    active: bool = False
    pane_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "index": self.index,
            "active": self.active,
            "pane_id": self.pane_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Window":
        return cls(
            id=_require(data, "id", str),
            name=_require(data, "name", str),
            index=_require(data, "index", int),
            active=_optional(data, "active", bool, False),
            pane_id=_optional(data, "pane_id", str, ""),
        )


@dataclass
class Session:
    """tmux 会话

    name 是会话的自然键，所有操作都通过名字定位会话。
    """

    id: str
    name: str
    windows: List[Window] = field(default_factory=list)
    created_at: int = 0
    attached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "windows": [w.to_dict() for w in self.windows],
            "created_at": self.created_at,
            "attached": self.attached,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        windows = _optional(data, "windows", list, [])
        return cls(
            id=_require(data, "id", str),
            name=_require(data, "name", str),
            windows=[Window.from_dict(_check("windows", w, dict)) for w in windows],
            created_at=_optional(data, "created_at", int, 0),
            attached=_optional(data, "attached", bool, False),
        )


# === 载荷定义 ===


class Payload:
    """载荷基类"""

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Payload":
        raise NotImplementedError


@dataclass
class EmptyPayload(Payload):
    """无字段载荷（list_sessions）"""

    def to_dict(self) -> Dict[str, Any]:
        return {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmptyPayload":
        return cls()


@dataclass
class ConnectPayload(Payload):
    """连接请求"""

    token: str = ""
    client_type: str = ""
    version: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "client_type": self.client_type,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectPayload":
        return cls(
            token=_optional(data, "token", str, ""),
            client_type=_optional(data, "client_type", str, ""),
            version=_optional(data, "version", str, ""),
        )


@dataclass
class ConnectAckPayload(Payload):
    """连接确认"""

    success: bool
    server_version: str
    encryption_enabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "server_version": self.server_version,
            "encryption_enabled": self.encryption_enabled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectAckPayload":
        return cls(
            success=_require(data, "success", bool),
            server_version=_require(data, "server_version", str),
            encryption_enabled=_optional(data, "encryption_enabled", bool, False),
        )


@dataclass
class ListSessionsResponse(Payload):
    sessions: List[Session] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"sessions": [s.to_dict() for s in self.sessions]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListSessionsResponse":
        sessions = _optional(data, "sessions", list, [])
        return cls(
            sessions=[Session.from_dict(_check("sessions", s, dict)) for s in sessions]
        )


@dataclass
class CreateSessionPayload(Payload):
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreateSessionPayload":
        name = _require(data, "name", str)
        if not name:
            raise ValidationException("session name must not be empty")
        return cls(name=name)


@dataclass
class CreateSessionResponse(Payload):
    success: bool
    session: Optional[Session] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": self.success}
        if self.session is not None:
            result["session"] = self.session.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreateSessionResponse":
        session = _optional(data, "session", dict)
        return cls(
            success=_require(data, "success", bool),
            session=Session.from_dict(session) if session is not None else None,
        )


@dataclass
class SessionNamePayload(Payload):
    """只携带会话名的请求（delete_session, list_windows）"""

    session_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"session_name": self.session_name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        return cls(session_name=_require(data, "session_name", str))


@dataclass
class DeleteSessionPayload(SessionNamePayload):
    pass


@dataclass
class ListWindowsPayload(SessionNamePayload):
    pass


@dataclass
class SessionResultPayload(Payload):
    """只携带成功标志和会话名的响应"""

    success: bool
    session_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "session_name": self.session_name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        return cls(
            success=_require(data, "success", bool),
            session_name=_require(data, "session_name", str),
        )


@dataclass
class DeleteSessionResponse(SessionResultPayload):
    pass


@dataclass
class ExecuteCommandResponse(SessionResultPayload):
    pass


@dataclass
class SendTextResponse(SessionResultPayload):
    pass


@dataclass
class RenameSessionPayload(Payload):
    old_name: str
    new_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"old_name": self.old_name, "new_name": self.new_name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RenameSessionPayload":
        new_name = _require(data, "new_name", str)
        if not new_name:
            raise ValidationException("new session name must not be empty")
        return cls(old_name=_require(data, "old_name", str), new_name=new_name)


@dataclass
class RenameSessionResponse(Payload):
    success: bool
    old_name: str
    new_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "old_name": self.old_name,
            "new_name": self.new_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RenameSessionResponse":
        return cls(
            success=_require(data, "success", bool),
            old_name=_require(data, "old_name", str),
            new_name=_require(data, "new_name", str),
        )


@dataclass
class ListWindowsResponse(Payload):
    session_name: str
    windows: List[Window] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_name": self.session_name,
            "windows": [w.to_dict() for w in self.windows],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListWindowsResponse":
        windows = _optional(data, "windows", list, [])
        return cls(
            session_name=_require(data, "session_name", str),
            windows=[Window.from_dict(_check("windows", w, dict)) for w in windows],
        )


@dataclass
class CreateWindowPayload(Payload):
    session_name: str
    window_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"session_name": self.session_name}
        if self.window_name:
            result["window_name"] = self.window_name
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreateWindowPayload":
        return cls(
            session_name=_require(data, "session_name", str),
            # 空字符串与缺省等价：由 tmux 分配默认名字
            window_name=_optional(data, "window_name", str) or None,
        )


@dataclass
class CreateWindowResponse(Payload):
    success: bool
    session_name: str
    window: Window

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "session_name": self.session_name,
            "window": self.window.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreateWindowResponse":
        return cls(
            success=_require(data, "success", bool),
            session_name=_require(data, "session_name", str),
            window=Window.from_dict(_require(data, "window", dict)),
        )


@dataclass
class WindowTargetPayload(Payload):
    """定位到具体窗口的请求（close_window, switch_window）"""

    session_name: str
    window_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {"session_name": self.session_name, "window_index": self.window_index}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        return cls(
            session_name=_require(data, "session_name", str),
            window_index=_require(data, "window_index", int),
        )


@dataclass
class CloseWindowPayload(WindowTargetPayload):
    pass


@dataclass
class SwitchWindowPayload(WindowTargetPayload):
    pass


@dataclass
class CloseWindowResponse(Payload):
    success: bool
    session_name: str
    window_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "session_name": self.session_name,
            "window_index": self.window_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CloseWindowResponse":
        return cls(
            success=_require(data, "success", bool),
            session_name=_require(data, "session_name", str),
            window_index=_require(data, "window_index", int),
        )


@dataclass
class SwitchWindowResponse(Payload):
    success: bool
    session_name: str
    window_index: int
    window_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "session_name": self.session_name,
            "window_index": self.window_index,
            "window_name": self.window_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwitchWindowResponse":
        return cls(
            success=_require(data, "success", bool),
            session_name=_require(data, "session_name", str),
            window_index=_require(data, "window_index", int),
            window_name=_require(data, "window_name", str),
        )


@dataclass
class ExecuteCommandPayload(Payload):
    session_name: str
    command: str
    window_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"session_name": self.session_name, "command": self.command}
        if self.window_index is not None:
            result["window_index"] = self.window_index
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecuteCommandPayload":
        return cls(
            session_name=_require(data, "session_name", str),
            command=_require(data, "command", str),
            window_index=_optional(data, "window_index", int),
        )


@dataclass
class SendTextPayload(Payload):
    session_name: str
    text: str
    window_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"session_name": self.session_name, "text": self.text}
        if self.window_index is not None:
            result["window_index"] = self.window_index
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SendTextPayload":
        return cls(
            session_name=_require(data, "session_name", str),
            text=_require(data, "text", str),
            window_index=_optional(data, "window_index", int),
        )


@dataclass
class CaptureOutputPayload(Payload):
    session_name: str
    window_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"session_name": self.session_name}
        if self.window_index is not None:
            result["window_index"] = self.window_index
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptureOutputPayload":
        return cls(
            session_name=_require(data, "session_name", str),
            window_index=_optional(data, "window_index", int),
        )


@dataclass
class CaptureOutputResponse(Payload):
    session_name: str
    output: str

    def to_dict(self) -> Dict[str, Any]:
        return {"session_name": self.session_name, "output": self.output}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptureOutputResponse":
        return cls(
            session_name=_require(data, "session_name", str),
            output=_require(data, "output", str),
        )


@dataclass
class TerminalOutputPayload(Payload):
    """主动推送的终端输出"""

    session_name: str
    output: str
    sequence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_name": self.session_name,
            "output": self.output,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TerminalOutputPayload":
        return cls(
            session_name=_require(data, "session_name", str),
            output=_require(data, "output", str),
            sequence=_optional(data, "sequence", int, 0),
        )


@dataclass
class ErrorPayload(Payload):
    """错误信息"""

    code: ErrorCode
    message: str
    original_message_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"code": self.code.value, "message": self.message}
        if self.original_message_id:
            result["original_message_id"] = self.original_message_id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorPayload":
        code = _require(data, "code", str)
        try:
            error_code = ErrorCode(code)
        except ValueError:
            raise ValidationException(f"unknown error code: {code}")
        return cls(
            code=error_code,
            message=_optional(data, "message", str, ""),
            original_message_id=_optional(data, "original_message_id", str),
        )


# 消息类型 -> 载荷类，覆盖全部消息类型
PAYLOAD_TYPES: Dict[MessageType, Type[Payload]] = {
    MessageType.CONNECT: ConnectPayload,
    MessageType.CONNECT_ACK: ConnectAckPayload,
    MessageType.LIST_SESSIONS: EmptyPayload,
    MessageType.LIST_SESSIONS_RESPONSE: ListSessionsResponse,
    MessageType.CREATE_SESSION: CreateSessionPayload,
    MessageType.CREATE_SESSION_RESPONSE: CreateSessionResponse,
    MessageType.DELETE_SESSION: DeleteSessionPayload,
    MessageType.DELETE_SESSION_RESPONSE: DeleteSessionResponse,
    MessageType.RENAME_SESSION: RenameSessionPayload,
    MessageType.RENAME_SESSION_RESPONSE: RenameSessionResponse,
    MessageType.LIST_WINDOWS: ListWindowsPayload,
    MessageType.LIST_WINDOWS_RESPONSE: ListWindowsResponse,
    MessageType.CREATE_WINDOW: CreateWindowPayload,
    MessageType.CREATE_WINDOW_RESPONSE: CreateWindowResponse,
    MessageType.CLOSE_WINDOW: CloseWindowPayload,
    MessageType.CLOSE_WINDOW_RESPONSE: CloseWindowResponse,
    MessageType.SWITCH_WINDOW: SwitchWindowPayload,
    MessageType.SWITCH_WINDOW_RESPONSE: SwitchWindowResponse,
    MessageType.EXECUTE_COMMAND: ExecuteCommandPayload,
    MessageType.EXECUTE_COMMAND_RESPONSE: ExecuteCommandResponse,
    MessageType.SEND_TEXT: SendTextPayload,
    MessageType.SEND_TEXT_RESPONSE: SendTextResponse,
    MessageType.TERMINAL_OUTPUT: TerminalOutputPayload,
    MessageType.CAPTURE_OUTPUT: CaptureOutputPayload,
    MessageType.CAPTURE_OUTPUT_RESPONSE: CaptureOutputResponse,
    MessageType.ERROR: ErrorPayload,
}

# 客户端可以发起的请求类型
REQUEST_TYPES = frozenset(
    {
        MessageType.CONNECT,
        MessageType.LIST_SESSIONS,
        MessageType.CREATE_SESSION,
        MessageType.DELETE_SESSION,
        MessageType.RENAME_SESSION,
        MessageType.LIST_WINDOWS,
        MessageType.CREATE_WINDOW,
        MessageType.CLOSE_WINDOW,
        MessageType.SWITCH_WINDOW,
        MessageType.EXECUTE_COMMAND,
        MessageType.SEND_TEXT,
        MessageType.CAPTURE_OUTPUT,
    }
)


def generate_message_id() -> str:
    """生成出站消息 ID"""
    return f"msg-{uuid.uuid4().hex}"


def decode_payload(message_type: MessageType, data: Dict[str, Any]) -> Payload:
    """按消息类型解码载荷

    Args:
        message_type: 消息类型
        data: 原始载荷字典

    Returns:
        对应类型的载荷实例

    Raises:
        ValidationException: 当载荷不符合该类型的结构时
    """
    if not isinstance(data, dict):
        raise ValidationException(f"{message_type.value} payload must be a JSON object")

    payload_class = PAYLOAD_TYPES[message_type]
    try:
        return payload_class.from_dict(data)
    except ValidationException:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationException(f"Invalid {message_type.value} payload: {e}")


@dataclass
class RawEnvelope:
    """通用信封（载荷尚未按类型解码）"""

    message_id: str
    message_type: str
    payload: Any
    timestamp: Optional[int] = None
    encrypted: bool = False

    @classmethod
    def from_json(cls, raw: Any) -> "RawEnvelope":
        """解析原始帧

        Raises:
            SerializationException: 帧不是合法 JSON 文本
            MessageFormatException: 信封结构不正确
        """
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise SerializationException(f"Invalid UTF-8 frame: {e}")
        # 超长整数会抛出 ValueError，嵌套过深会抛出 RecursionError
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError, TypeError) as e:
            raise SerializationException(f"Invalid JSON format: {e}")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> "RawEnvelope":
        if not isinstance(data, dict):
            raise MessageFormatException("Envelope must be a JSON object")

        message_id = data.get("id") or ""
        if not isinstance(message_id, str):
            raise MessageFormatException("Envelope id must be a string")

        message_type = data.get("type")
        if not isinstance(message_type, str) or not message_type:
            raise MessageFormatException("Envelope type must be a non-empty string")

        # payload 的结构在按类型解码时才检查
        payload = data.get("payload")
        if payload is None:
            payload = {}

        timestamp = data.get("timestamp")
        if timestamp is not None and (
            isinstance(timestamp, bool) or not isinstance(timestamp, int)
        ):
            raise MessageFormatException(
                "Envelope timestamp must be an integer", message_id or None
            )

        return cls(
            message_id=message_id,
            message_type=message_type,
            payload=payload,
            timestamp=timestamp,
            encrypted=bool(data.get("encrypted", False)),
        )

    def resolve_type(self, allowed=None) -> MessageType:
        """校验消息类型标签

        Args:
            allowed: 允许的类型集合，默认为全部类型

        Raises:
            UnknownMessageTypeException: 类型不存在或不被允许
        """
        try:
            message_type = MessageType(self.message_type)
        except ValueError:
            raise UnknownMessageTypeException(self.message_type, self.message_id or None)
        if allowed is not None and message_type not in allowed:
            raise UnknownMessageTypeException(self.message_type, self.message_id or None)
        return message_type


@dataclass
class Envelope:
    """handx 信封消息格式

    外层信封携带 id/type/timestamp，内层 payload 的结构由 type 决定。
    """

    message_type: MessageType
    payload: Payload
    message_id: Optional[str] = None
    timestamp: Optional[int] = None
    encrypted: bool = False

    def __post_init__(self):
        if self.message_id is None:
            self.message_id = generate_message_id()
        if self.timestamp is None:
            self.timestamp = now_millis()

    def to_dict(self) -> Dict[str, Any]:
        """序列化为字典

        {
          "id": "msg-...",
          "type": "create_session_response",
          "payload": { 载荷 },
          "timestamp": 1700000000000
        }
        """
        result = {
            "id": self.message_id,
            "type": self.message_type.value,
            "payload": self.payload.to_dict(),
            "timestamp": self.timestamp,
        }
        if self.encrypted:
            result["encrypted"] = True
        return result

    def to_json(self) -> str:
        """序列化为JSON字符串"""
        try:
            return json.dumps(self.to_dict(), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise SerializationException(f"Failed to serialize message: {e}")

    @classmethod
    def from_raw(cls, raw: RawEnvelope, allowed=None) -> "Envelope":
        """由通用信封解码出带类型载荷的信封"""
        message_type = raw.resolve_type(allowed)
        try:
            payload = decode_payload(message_type, raw.payload)
        except ValidationException as e:
            e.message_id = raw.message_id or None
            raise
        return cls(
            message_type=message_type,
            payload=payload,
            message_id=raw.message_id,
            timestamp=raw.timestamp,
            encrypted=raw.encrypted,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Envelope":
        """从字典反序列化"""
        return cls.from_raw(RawEnvelope.from_dict(data))

    @classmethod
    def from_json(cls, json_str: Any) -> "Envelope":
        """从JSON字符串反序列化"""
        return cls.from_raw(RawEnvelope.from_json(json_str))


def error_envelope(
    code: ErrorCode, message: str, original_message_id: Optional[str] = None
) -> Envelope:
    """创建错误信封"""
    return Envelope(
        message_type=MessageType.ERROR,
        payload=ErrorPayload(
            code=code, message=message, original_message_id=original_message_id
        ),
    )
