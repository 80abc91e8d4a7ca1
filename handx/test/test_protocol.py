"""测试 protocol 模块的基本功能"""

import json

import pytest

from handx.protocol import (
    PAYLOAD_TYPES,
    REQUEST_TYPES,
    CaptureOutputPayload,
    CaptureOutputResponse,
    CloseWindowPayload,
    CloseWindowResponse,
    ConnectAckPayload,
    ConnectPayload,
    CreateSessionPayload,
    CreateSessionResponse,
    CreateWindowPayload,
    CreateWindowResponse,
    DeleteSessionPayload,
    DeleteSessionResponse,
    EmptyPayload,
    Envelope,
    ErrorCode,
    ErrorPayload,
    ExecuteCommandPayload,
    ExecuteCommandResponse,
    ListSessionsResponse,
    ListWindowsPayload,
    ListWindowsResponse,
    MessageFormatException,
    MessageType,
    RawEnvelope,
    RenameSessionPayload,
    RenameSessionResponse,
    SendTextPayload,
    SendTextResponse,
    SerializationException,
    Session,
    SwitchWindowPayload,
    SwitchWindowResponse,
    TerminalOutputPayload,
    UnknownMessageTypeException,
    ValidationException,
    Window,
    error_envelope,
)


def _session():
    return Session(
        id="session-dev",
        name="dev",
        windows=[
            Window(id="window-dev-0", name="bash", index=0, active=True, pane_id="%1"),
            Window(id="window-dev-3", name="logs", index=3, pane_id="%4"),
        ],
        created_at=1700000000000,
    )


def test_envelope_wire_format():
    """测试信封序列化字段"""
    envelope = Envelope(
        MessageType.CREATE_SESSION_RESPONSE,
        CreateSessionResponse(success=True, session=_session()),
    )
    data = json.loads(envelope.to_json())

    assert set(data) == {"id", "type", "payload", "timestamp"}
    assert data["id"].startswith("msg-")
    assert data["type"] == "create_session_response"
    assert isinstance(data["timestamp"], int)
    assert data["payload"]["session"]["windows"][1]["index"] == 3


def test_envelope_ids_are_unique():
    """测试出站消息 ID 不重复"""
    ids = {
        Envelope(MessageType.LIST_SESSIONS, EmptyPayload()).message_id
        for _ in range(50)
    }
    assert len(ids) == 50


def test_response_round_trip():
    """测试响应消息经过 JSON 后保持不变"""
    original = Envelope(
        MessageType.SWITCH_WINDOW_RESPONSE,
        SwitchWindowResponse(
            success=True, session_name="dev", window_index=2, window_name="logs"
        ),
        message_id="msg-1",
    )
    restored = Envelope.from_json(original.to_json())

    assert restored.message_type == MessageType.SWITCH_WINDOW_RESPONSE
    assert restored.payload == original.payload
    assert restored.message_id == "msg-1"
    assert restored.timestamp == original.timestamp


_WINDOW = Window(id="window-dev-1", name="logs", index=1, active=True, pane_id="%2")

# 每种消息类型一个典型载荷
SAMPLES = {
    MessageType.CONNECT: ConnectPayload(token="abc", client_type="ios", version="1.2"),
    MessageType.CONNECT_ACK: ConnectAckPayload(success=True, server_version="1.0.0"),
    MessageType.LIST_SESSIONS: EmptyPayload(),
    MessageType.LIST_SESSIONS_RESPONSE: ListSessionsResponse(sessions=[_session()]),
    MessageType.CREATE_SESSION: CreateSessionPayload(name="dev"),
    MessageType.CREATE_SESSION_RESPONSE: CreateSessionResponse(
        success=True, session=_session()
    ),
    MessageType.DELETE_SESSION: DeleteSessionPayload(session_name="dev"),
    MessageType.DELETE_SESSION_RESPONSE: DeleteSessionResponse(
        success=True, session_name="dev"
    ),
    MessageType.RENAME_SESSION: RenameSessionPayload(old_name="dev", new_name="prod"),
    MessageType.RENAME_SESSION_RESPONSE: RenameSessionResponse(
        success=True, old_name="dev", new_name="prod"
    ),
    MessageType.LIST_WINDOWS: ListWindowsPayload(session_name="dev"),
    MessageType.LIST_WINDOWS_RESPONSE: ListWindowsResponse(
        session_name="dev", windows=[_WINDOW]
    ),
    MessageType.CREATE_WINDOW: CreateWindowPayload(session_name="dev", window_name="logs"),
    MessageType.CREATE_WINDOW_RESPONSE: CreateWindowResponse(
        success=True, session_name="dev", window=_WINDOW
    ),
    MessageType.CLOSE_WINDOW: CloseWindowPayload(session_name="dev", window_index=1),
    MessageType.CLOSE_WINDOW_RESPONSE: CloseWindowResponse(
        success=True, session_name="dev", window_index=1
    ),
    MessageType.SWITCH_WINDOW: SwitchWindowPayload(session_name="dev", window_index=1),
    MessageType.SWITCH_WINDOW_RESPONSE: SwitchWindowResponse(
        success=True, session_name="dev", window_index=1, window_name="logs"
    ),
    MessageType.EXECUTE_COMMAND: ExecuteCommandPayload(
        session_name="dev", command="ls -la", window_index=1
    ),
    MessageType.EXECUTE_COMMAND_RESPONSE: ExecuteCommandResponse(
        success=True, session_name="dev"
    ),
    MessageType.SEND_TEXT: SendTextPayload(session_name="dev", text="你好\t$HOME"),
    MessageType.SEND_TEXT_RESPONSE: SendTextResponse(success=True, session_name="dev"),
    MessageType.TERMINAL_OUTPUT: TerminalOutputPayload(
        session_name="dev", output="line 1\nline 2", sequence=7
    ),
    MessageType.CAPTURE_OUTPUT: CaptureOutputPayload(session_name="dev", window_index=0),
    MessageType.CAPTURE_OUTPUT_RESPONSE: CaptureOutputResponse(
        session_name="dev", output="$ "
    ),
    MessageType.ERROR: ErrorPayload(
        code=ErrorCode.SESSION_NOT_FOUND,
        message="session 'dev' not found",
        original_message_id="req-1",
    ),
}


def test_samples_cover_every_type():
    """测试样例覆盖全部消息类型"""
    assert set(SAMPLES) == set(MessageType)


@pytest.mark.parametrize("message_type", list(MessageType), ids=lambda t: t.value)
def test_every_type_round_trip(message_type):
    """测试每种消息类型经过 JSON 后类型和载荷保持不变"""
    original = Envelope(message_type, SAMPLES[message_type], message_id="msg-rt")
    restored = Envelope.from_json(original.to_json())

    assert restored.message_type == message_type
    assert type(restored.payload) is PAYLOAD_TYPES[message_type]
    assert restored.payload == original.payload
    assert restored.to_dict() == original.to_dict()


def test_session_round_trip():
    """测试会话实体经过 JSON 后保持不变"""
    session = _session()
    assert Session.from_dict(json.loads(json.dumps(session.to_dict()))) == session


def test_request_decoding():
    """测试请求解码"""
    envelope = Envelope.from_json(
        json.dumps(
            {
                "id": "c-1",
                "type": "execute_command",
                "payload": {"session_name": "dev", "command": "ls", "window_index": 1},
            }
        ),
    )
    assert isinstance(envelope.payload, ExecuteCommandPayload)
    assert envelope.payload.command == "ls"
    assert envelope.payload.window_index == 1


def test_request_payload_defaults():
    """测试可选字段缺省"""
    envelope = Envelope.from_dict(
        {"id": "c-2", "type": "create_window", "payload": {"session_name": "dev"}}
    )
    assert envelope.payload == CreateWindowPayload(session_name="dev", window_name=None)
    assert "window_name" not in envelope.payload.to_dict()

    envelope = Envelope.from_dict({"id": "c-3", "type": "list_sessions"})
    assert envelope.payload.to_dict() == {}


def test_invalid_frames():
    """测试结构错误的帧"""
    with pytest.raises(SerializationException):
        RawEnvelope.from_json("not json")
    with pytest.raises(SerializationException):
        RawEnvelope.from_json(b"\xff\xfe")
    with pytest.raises(MessageFormatException):
        RawEnvelope.from_json("[1, 2]")
    with pytest.raises(MessageFormatException):
        RawEnvelope.from_json('{"id": "x", "payload": {}}')
    with pytest.raises(MessageFormatException):
        RawEnvelope.from_json('{"id": 5, "type": "list_sessions"}')


def test_unknown_type():
    """测试未知类型和不允许的类型"""
    raw = RawEnvelope.from_json('{"id": "u-1", "type": "reboot", "payload": {}}')
    with pytest.raises(UnknownMessageTypeException) as info:
        raw.resolve_type(REQUEST_TYPES)
    assert info.value.message_id == "u-1"

    # 响应类型不能作为请求发送
    raw = RawEnvelope.from_json('{"id": "u-2", "type": "connect_ack", "payload": {}}')
    with pytest.raises(UnknownMessageTypeException):
        Envelope.from_raw(raw, REQUEST_TYPES)
    assert raw.resolve_type() == MessageType.CONNECT_ACK


def test_payload_validation():
    """测试载荷校验"""
    cases = [
        {"type": "create_session", "payload": {}},
        {"type": "create_session", "payload": {"name": ""}},
        {"type": "close_window", "payload": {"session_name": "dev", "window_index": "1"}},
        {"type": "close_window", "payload": {"session_name": "dev", "window_index": True}},
        {"type": "execute_command", "payload": {"session_name": "dev"}},
        {"type": "rename_session", "payload": {"old_name": "a", "new_name": ""}},
        {"type": "list_windows", "payload": [1, 2]},
    ]
    for case in cases:
        raw = RawEnvelope.from_dict(dict(case, id="v-1"))
        with pytest.raises(ValidationException) as info:
            Envelope.from_raw(raw, REQUEST_TYPES)
        assert info.value.message_id == "v-1"


def test_payload_table_is_total():
    """测试每种消息类型都有载荷定义"""
    assert set(PAYLOAD_TYPES) == set(MessageType)
    assert REQUEST_TYPES <= set(PAYLOAD_TYPES)
    assert MessageType.TERMINAL_OUTPUT not in REQUEST_TYPES


def test_error_envelope():
    """测试错误消息"""
    envelope = error_envelope(ErrorCode.SESSION_NOT_FOUND, "session 'x' not found", "c-9")
    data = envelope.to_dict()

    assert data["type"] == "error"
    assert data["payload"] == {
        "code": "SESSION_NOT_FOUND",
        "message": "session 'x' not found",
        "original_message_id": "c-9",
    }
    assert ErrorPayload.from_dict(data["payload"]).code == ErrorCode.SESSION_NOT_FOUND

    # 没有原始 ID 时不输出该字段
    payload = error_envelope(ErrorCode.INVALID_MESSAGE, "bad").to_dict()["payload"]
    assert "original_message_id" not in payload


def test_create_session_payload():
    assert CreateSessionPayload.from_dict({"name": "dev"}).name == "dev"
