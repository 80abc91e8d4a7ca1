"""handx 协议类型定义

本模块定义了 handx 网关协议的基础枚举：消息类型和错误码。
"""

from enum import Enum


class MessageType(Enum):
    """消息类型枚举

    定义了网关支持的所有消息类型。请求类型与响应类型一一对应，
    任何请求都可能收到 ERROR 作为替代响应。
    """

    # 连接
    CONNECT = "connect"
    CONNECT_ACK = "connect_ack"

    # 会话管理
    LIST_SESSIONS = "list_sessions"
    LIST_SESSIONS_RESPONSE = "list_sessions_response"
    CREATE_SESSION = "create_session"
    CREATE_SESSION_RESPONSE = "create_session_response"
    DELETE_SESSION = "delete_session"
    DELETE_SESSION_RESPONSE = "delete_session_response"
    RENAME_SESSION = "rename_session"
    RENAME_SESSION_RESPONSE = "rename_session_response"

    # 窗口管理
    LIST_WINDOWS = "list_windows"
    LIST_WINDOWS_RESPONSE = "list_windows_response"
    CREATE_WINDOW = "create_window"
    CREATE_WINDOW_RESPONSE = "create_window_response"
    CLOSE_WINDOW = "close_window"
    CLOSE_WINDOW_RESPONSE = "close_window_response"
    SWITCH_WINDOW = "switch_window"
    SWITCH_WINDOW_RESPONSE = "switch_window_response"

    # 命令执行
    EXECUTE_COMMAND = "execute_command"
    EXECUTE_COMMAND_RESPONSE = "execute_command_response"
    SEND_TEXT = "send_text"
    SEND_TEXT_RESPONSE = "send_text_response"

    # 终端输出
    TERMINAL_OUTPUT = "terminal_output"
    CAPTURE_OUTPUT = "capture_output"
    CAPTURE_OUTPUT_RESPONSE = "capture_output_response"

    # 错误
    ERROR = "error"


class ErrorCode(Enum):
    """错误码枚举

    所有错误都以 ERROR 消息的形式返回给客户端。
    """

    INVALID_TOKEN = "INVALID_TOKEN"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_ALREADY_EXISTS = "SESSION_ALREADY_EXISTS"
    WINDOW_NOT_FOUND = "WINDOW_NOT_FOUND"
    COMMAND_FAILED = "COMMAND_FAILED"
    TMUX_ERROR = "TMUX_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_MESSAGE = "INVALID_MESSAGE"
    UNKNOWN_MESSAGE_TYPE = "UNKNOWN_MESSAGE_TYPE"
