"""Hub 协议路由器

每条入站消息经过 解码 → 校验 → 分发 → 编码 四步，
每种请求类型对应一个处理器，处理器只调用一次多路复用器操作。
任何错误都被转换成 error 消息发回客户端，不会从路由器中抛出。
"""

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Union

from ..exceptions import (
    HandxError,
    InvalidTokenError,
    SessionAlreadyExistsError,
    SessionNotFoundError,
    TmuxError,
    WindowNotFoundError,
)
from ..protocol import (
    REQUEST_TYPES,
    CaptureOutputResponse,
    CloseWindowResponse,
    ConnectAckPayload,
    CreateSessionResponse,
    CreateWindowResponse,
    DeleteSessionResponse,
    Envelope,
    ErrorCode,
    ExecuteCommandResponse,
    ListSessionsResponse,
    ListWindowsResponse,
    MessageFormatException,
    MessageType,
    RawEnvelope,
    RenameSessionResponse,
    SendTextResponse,
    SerializationException,
    SwitchWindowResponse,
    UnknownMessageTypeException,
    ValidationException,
    error_envelope,
)
from ..tmux import Multiplexer
from ..utils import get_logger
from .auth import TokenManager

if TYPE_CHECKING:
    from .client import ClientSession

SERVER_VERSION = "1.0.0"

# 这些请求的多路复用器失败被视为命令执行失败
_COMMAND_TYPES = frozenset({MessageType.EXECUTE_COMMAND, MessageType.SEND_TEXT})

Handler = Callable[["ClientSession", Envelope], Awaitable[Envelope]]


def classify_error(message_type: MessageType, error: HandxError) -> ErrorCode:
    """把内部异常映射为协议错误码

    Args:
        message_type: 出错的请求类型
        error: 异常

    Returns:
        协议错误码
    """
    if isinstance(
        error,
        (
            SessionNotFoundError,
            WindowNotFoundError,
            SessionAlreadyExistsError,
            InvalidTokenError,
        ),
    ):
        return error.error_code
    if isinstance(error, TmuxError) and message_type in _COMMAND_TYPES:
        return ErrorCode.COMMAND_FAILED
    return error.error_code


class ProtocolRouter:
    """协议路由器"""

    def __init__(
        self,
        multiplexer: Multiplexer,
        token_manager: Optional[TokenManager] = None,
        require_token: bool = True,
        server_version: str = SERVER_VERSION,
    ):
        self.multiplexer = multiplexer
        self.token_manager = token_manager
        self.require_token = require_token
        self.server_version = server_version

        self._handlers: Dict[MessageType, Handler] = {
            MessageType.CONNECT: self._handle_connect,
            MessageType.LIST_SESSIONS: self._handle_list_sessions,
            MessageType.CREATE_SESSION: self._handle_create_session,
            MessageType.DELETE_SESSION: self._handle_delete_session,
            MessageType.RENAME_SESSION: self._handle_rename_session,
            MessageType.LIST_WINDOWS: self._handle_list_windows,
            MessageType.CREATE_WINDOW: self._handle_create_window,
            MessageType.CLOSE_WINDOW: self._handle_close_window,
            MessageType.SWITCH_WINDOW: self._handle_switch_window,
            MessageType.EXECUTE_COMMAND: self._handle_execute_command,
            MessageType.SEND_TEXT: self._handle_send_text,
            MessageType.CAPTURE_OUTPUT: self._handle_capture_output,
        }

        # 统计
        self.messages_routed = 0
        self.errors_sent = 0

        self.logger = get_logger("handx.hub.router")

    @property
    def handled_types(self):
        return frozenset(self._handlers)

    async def handle_frame(self, client: "ClientSession", frame: Union[str, bytes]) -> None:
        """处理一帧入站消息

        Args:
            client: 发送者会话
            frame: 原始帧
        """
        # 1. 解析通用信封
        try:
            raw = RawEnvelope.from_json(frame)
        except (SerializationException, MessageFormatException) as e:
            self.logger.warning(f"客户端 {client.client_id} 发送了无效消息: {e}")
            self._send_error(client, ErrorCode.INVALID_MESSAGE, "Failed to parse message")
            return

        message_id = raw.message_id or None

        # 2. 校验类型，3. 按类型解码载荷
        try:
            envelope = Envelope.from_raw(raw, REQUEST_TYPES)
        except UnknownMessageTypeException as e:
            self.logger.warning(f"未知消息类型: {raw.message_type}")
            self._send_error(client, ErrorCode.UNKNOWN_MESSAGE_TYPE, str(e), message_id)
            return
        except ValidationException as e:
            self.logger.warning(f"{raw.message_type} 载荷无效: {e}")
            self._send_error(
                client,
                ErrorCode.INTERNAL_ERROR,
                f"Invalid {raw.message_type} payload: {e}",
                message_id,
            )
            return

        message_type = envelope.message_type
        self.logger.debug(
            f"路由消息: {message_type.value} ({message_id}) from {client.client_id}"
        )

        # 4. 认证检查
        if (
            self.require_token
            and not client.authenticated
            and message_type != MessageType.CONNECT
        ):
            self.logger.warning(
                f"客户端 {client.client_id} 未认证，拒绝 {message_type.value}"
            )
            self._send_error(
                client,
                ErrorCode.INVALID_TOKEN,
                "Not authenticated, send connect with a valid token first",
                message_id,
            )
            return

        # 5. 分发
        handler = self._handlers[message_type]
        try:
            response = await handler(client, envelope)
        except HandxError as e:
            code = classify_error(message_type, e)
            self.logger.warning(f"处理 {message_type.value} 失败: [{code.value}] {e.message}")
            self._send_error(client, code, e.message, message_id)
            return
        except Exception as e:
            self.logger.error(f"处理 {message_type.value} 时发生未预期的错误: {e}")
            self._send_error(client, ErrorCode.INTERNAL_ERROR, str(e), message_id)
            return

        # 6. 编码并入队
        self.messages_routed += 1
        client.send(response)

    def _send_error(
        self,
        client: "ClientSession",
        code: ErrorCode,
        message: str,
        message_id: Optional[str] = None,
    ) -> None:
        self.errors_sent += 1
        client.send(error_envelope(code, message, message_id))

    # 处理器

    async def _handle_connect(self, client: "ClientSession", envelope: Envelope) -> Envelope:
        payload = envelope.payload
        if self.require_token:
            token = payload.token or client.query_token
            if self.token_manager is None or not self.token_manager.validate(token):
                raise InvalidTokenError()

        client.authenticated = True
        client.client_type = payload.client_type
        client.client_version = payload.version
        self.logger.info(
            f"客户端认证成功: {client.client_id} "
            f"({payload.client_type or 'unknown'} {payload.version})"
        )

        return Envelope(
            MessageType.CONNECT_ACK,
            ConnectAckPayload(
                success=True,
                server_version=self.server_version,
                encryption_enabled=False,
            ),
        )

    async def _handle_list_sessions(
        self, client: "ClientSession", envelope: Envelope
    ) -> Envelope:
        sessions = await self.multiplexer.list_sessions()
        return Envelope(
            MessageType.LIST_SESSIONS_RESPONSE, ListSessionsResponse(sessions=sessions)
        )

    async def _handle_create_session(
        self, client: "ClientSession", envelope: Envelope
    ) -> Envelope:
        session = await self.multiplexer.create_session(envelope.payload.name)
        return Envelope(
            MessageType.CREATE_SESSION_RESPONSE,
            CreateSessionResponse(success=True, session=session),
        )

    async def _handle_delete_session(
        self, client: "ClientSession", envelope: Envelope
    ) -> Envelope:
        name = envelope.payload.session_name
        await self.multiplexer.kill_session(name)
        return Envelope(
            MessageType.DELETE_SESSION_RESPONSE,
            DeleteSessionResponse(success=True, session_name=name),
        )

    async def _handle_rename_session(
        self, client: "ClientSession", envelope: Envelope
    ) -> Envelope:
        payload = envelope.payload
        new_name = await self.multiplexer.rename_session(
            payload.old_name, payload.new_name
        )
        return Envelope(
            MessageType.RENAME_SESSION_RESPONSE,
            RenameSessionResponse(
                success=True, old_name=payload.old_name, new_name=new_name
            ),
        )

    async def _handle_list_windows(
        self, client: "ClientSession", envelope: Envelope
    ) -> Envelope:
        name = envelope.payload.session_name
        windows = await self.multiplexer.list_windows(name)
        return Envelope(
            MessageType.LIST_WINDOWS_RESPONSE,
            ListWindowsResponse(session_name=name, windows=windows),
        )

    async def _handle_create_window(
        self, client: "ClientSession", envelope: Envelope
    ) -> Envelope:
        payload = envelope.payload
        window = await self.multiplexer.create_window(
            payload.session_name, payload.window_name
        )
        return Envelope(
            MessageType.CREATE_WINDOW_RESPONSE,
            CreateWindowResponse(
                success=True, session_name=payload.session_name, window=window
            ),
        )

    async def _handle_close_window(
        self, client: "ClientSession", envelope: Envelope
    ) -> Envelope:
        payload = envelope.payload
        await self.multiplexer.close_window(payload.session_name, payload.window_index)
        return Envelope(
            MessageType.CLOSE_WINDOW_RESPONSE,
            CloseWindowResponse(
                success=True,
                session_name=payload.session_name,
                window_index=payload.window_index,
            ),
        )

    async def _handle_switch_window(
        self, client: "ClientSession", envelope: Envelope
    ) -> Envelope:
        payload = envelope.payload
        window_name = await self.multiplexer.switch_window(
            payload.session_name, payload.window_index
        )
        return Envelope(
            MessageType.SWITCH_WINDOW_RESPONSE,
            SwitchWindowResponse(
                success=True,
                session_name=payload.session_name,
                window_index=payload.window_index,
                window_name=window_name,
            ),
        )

    async def _handle_execute_command(
        self, client: "ClientSession", envelope: Envelope
    ) -> Envelope:
        payload = envelope.payload
        await self.multiplexer.execute_command(
            payload.session_name, payload.command, payload.window_index
        )
        return Envelope(
            MessageType.EXECUTE_COMMAND_RESPONSE,
            ExecuteCommandResponse(success=True, session_name=payload.session_name),
        )

    async def _handle_send_text(
        self, client: "ClientSession", envelope: Envelope
    ) -> Envelope:
        payload = envelope.payload
        await self.multiplexer.send_text(
            payload.session_name, payload.text, payload.window_index
        )
        return Envelope(
            MessageType.SEND_TEXT_RESPONSE,
            SendTextResponse(success=True, session_name=payload.session_name),
        )

    async def _handle_capture_output(
        self, client: "ClientSession", envelope: Envelope
    ) -> Envelope:
        payload = envelope.payload
        output = await self.multiplexer.capture_output(
            payload.session_name, payload.window_index
        )
        return Envelope(
            MessageType.CAPTURE_OUTPUT_RESPONSE,
            CaptureOutputResponse(session_name=payload.session_name, output=output),
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "messages_routed": self.messages_routed,
            "errors_sent": self.errors_sent,
            "require_token": self.require_token,
        }
