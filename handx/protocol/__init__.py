"""handx 协议核心模块"""

from .exceptions import (
    ProtocolException,
    SerializationException,
    MessageFormatException,
    ValidationException,
    UnknownMessageTypeException,
)
from .types import MessageType, ErrorCode
from .messages import (
    # 实体
    Session,
    Window,
    # 载荷
    Payload,
    EmptyPayload,
    ConnectPayload,
    ConnectAckPayload,
    ListSessionsResponse,
    CreateSessionPayload,
    CreateSessionResponse,
    DeleteSessionPayload,
    DeleteSessionResponse,
    RenameSessionPayload,
    RenameSessionResponse,
    ListWindowsPayload,
    ListWindowsResponse,
    CreateWindowPayload,
    CreateWindowResponse,
    CloseWindowPayload,
    CloseWindowResponse,
    SwitchWindowPayload,
    SwitchWindowResponse,
    ExecuteCommandPayload,
    ExecuteCommandResponse,
    SendTextPayload,
    SendTextResponse,
    CaptureOutputPayload,
    CaptureOutputResponse,
    TerminalOutputPayload,
    ErrorPayload,
    # 信封
    RawEnvelope,
    Envelope,
    PAYLOAD_TYPES,
    REQUEST_TYPES,
    # 工厂函数
    decode_payload,
    error_envelope,
    generate_message_id,
    now_millis,
)

__all__ = [
    # 异常类
    "ProtocolException",
    "SerializationException",
    "MessageFormatException",
    "ValidationException",
    "UnknownMessageTypeException",
    # 类型枚举
    "MessageType",
    "ErrorCode",
    # 实体
    "Session",
    "Window",
    # 载荷
    "Payload",
    "EmptyPayload",
    "ConnectPayload",
    "ConnectAckPayload",
    "ListSessionsResponse",
    "CreateSessionPayload",
    "CreateSessionResponse",
    "DeleteSessionPayload",
    "DeleteSessionResponse",
    "RenameSessionPayload",
    "RenameSessionResponse",
    "ListWindowsPayload",
    "ListWindowsResponse",
    "CreateWindowPayload",
    "CreateWindowResponse",
    "CloseWindowPayload",
    "CloseWindowResponse",
    "SwitchWindowPayload",
    "SwitchWindowResponse",
    "ExecuteCommandPayload",
    "ExecuteCommandResponse",
    "SendTextPayload",
    "SendTextResponse",
    "CaptureOutputPayload",
    "CaptureOutputResponse",
    "TerminalOutputPayload",
    "ErrorPayload",
    # 信封
    "RawEnvelope",
    "Envelope",
    "PAYLOAD_TYPES",
    "REQUEST_TYPES",
    # 工厂函数
    "decode_payload",
    "error_envelope",
    "generate_message_id",
    "now_millis",
]
