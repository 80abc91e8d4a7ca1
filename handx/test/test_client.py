"""测试客户端会话的读写循环"""

import asyncio

from handx.hub import ClientSession, ConnectionHub, ProtocolRouter
from handx.protocol import EmptyPayload, Envelope, MessageType, TerminalOutputPayload
from handx.tmux import TmuxBridge

from .fakes import FakeTmuxClient, FakeWebSocket


def _session(websocket, **kwargs):
    hub = ConnectionHub()
    router = ProtocolRouter(TmuxBridge(FakeTmuxClient()), require_token=False)
    client = ClientSession(websocket, hub, router, **kwargs)
    hub.register(client)
    return hub, client


def test_query_token_and_defaults():
    """测试从 URL 查询参数读取令牌"""

    async def scenario():
        _, client = _session(FakeWebSocket(path="/ws?token=abc123&x=1"))
        assert client.query_token == "abc123"
        assert client.authenticated is False

        _, client = _session(FakeWebSocket(path="/ws"))
        assert client.query_token is None

    asyncio.run(scenario())


def test_send_drops_when_full():
    """测试发送队列已满时丢弃最新消息"""

    async def scenario():
        _, client = _session(FakeWebSocket(), queue_size=2)
        envelopes = [
            Envelope(MessageType.LIST_SESSIONS, EmptyPayload(), message_id=f"m{i}")
            for i in range(3)
        ]

        assert client.send(envelopes[0])
        assert client.send(envelopes[1])
        assert client.send(envelopes[2]) is False
        assert client.messages_dropped == 1
        # 单播丢弃不会断开连接
        assert client.connected

    asyncio.run(scenario())


def test_write_loop_preserves_order_and_frames():
    """测试写循环按 FIFO 发送，每条消息是独立的帧"""

    async def scenario():
        websocket = FakeWebSocket()
        _, client = _session(websocket)
        for i in range(5):
            envelope = Envelope(MessageType.LIST_SESSIONS, EmptyPayload(), message_id=f"m{i}")
            client.send(envelope)

        task = asyncio.create_task(client.run())
        await asyncio.sleep(0.05)

        assert [m["id"] for m in websocket.messages()] == [f"m{i}" for i in range(5)]

        await websocket.close()
        await asyncio.wait_for(task, 1)

    asyncio.run(scenario())


def test_request_response_through_pumps():
    """测试读循环把请求交给路由器，响应由写循环发出"""

    async def scenario():
        websocket = FakeWebSocket()
        hub, client = _session(websocket)
        task = asyncio.create_task(client.run())

        websocket.feed({"id": "c-1", "type": "create_session", "payload": {"name": "dev"}})
        websocket.feed("garbage")
        websocket.feed({"id": "c-2", "type": "list_sessions", "payload": {}})
        await asyncio.sleep(0.05)

        messages = websocket.messages()
        assert [m["type"] for m in messages] == [
            "create_session_response",
            "error",
            "list_sessions_response",
        ]
        assert messages[1]["payload"]["code"] == "INVALID_MESSAGE"
        # 无效消息不会断开连接
        assert client.connected

        await websocket.close()
        await asyncio.wait_for(task, 1)
        assert hub.get_client(client.client_id) is None

    asyncio.run(scenario())


def test_pong_keeps_connection_alive():
    """测试 pong 刷新读截止时间"""

    async def scenario():
        websocket = FakeWebSocket(auto_pong=True)
        hub, client = _session(websocket, read_timeout=0.2, ping_interval=0.05)
        task = asyncio.create_task(client.run())

        await asyncio.sleep(0.5)
        assert websocket.pings >= 3
        assert not websocket.is_closed
        assert hub.get_client(client.client_id) is client

        await websocket.close()
        await asyncio.wait_for(task, 1)

    asyncio.run(scenario())


def test_read_deadline_disconnects():
    """测试没有任何入站流量时读超时断开"""

    async def scenario():
        websocket = FakeWebSocket(auto_pong=False)
        hub, client = _session(websocket, read_timeout=0.1, ping_interval=0.05)
        task = asyncio.create_task(client.run())

        await asyncio.wait_for(task, 1)
        assert websocket.is_closed
        assert websocket.pings >= 1
        assert hub.get_client(client.client_id) is None
        assert client.connected is False

    asyncio.run(scenario())


def test_hub_eviction_flushes_and_closes():
    """测试被 Hub 注销后写循环发送剩余消息并关闭连接"""

    async def scenario():
        websocket = FakeWebSocket()
        hub, client = _session(websocket)
        client.send(
            Envelope(MessageType.LIST_SESSIONS, EmptyPayload(), message_id="last")
        )
        hub.unregister(client)

        await asyncio.wait_for(client.run(), 1)
        assert [m["id"] for m in websocket.messages()] == ["last"]
        assert websocket.close_code == 1000

    asyncio.run(scenario())


def test_shutdown_is_idempotent():
    """测试重复 shutdown"""

    async def scenario():
        websocket = FakeWebSocket()
        hub, client = _session(websocket)

        await client.shutdown()
        await client.shutdown()

        assert hub.get_client(client.client_id) is None
        assert websocket.is_closed
        assert client.send(Envelope(MessageType.LIST_SESSIONS, EmptyPayload())) is False

    asyncio.run(scenario())


def test_oversized_frames_keep_connection():
    """测试解析时超出解释器限制的帧只返回错误，不断开连接"""

    async def scenario():
        frames = [
            # 超过整数位数上限
            '{"id": "x", "type": "list_sessions", "payload": {"n": ' + "1" * 5000 + "}}",
            # 嵌套层数超过递归上限
            "[" * 100000 + "]" * 100000,
        ]
        for frame in frames:
            websocket = FakeWebSocket()
            hub, client = _session(websocket)
            task = asyncio.create_task(client.run())

            websocket.feed(frame)
            websocket.feed({"id": "c-1", "type": "list_sessions", "payload": {}})
            await asyncio.sleep(0.05)

            messages = websocket.messages()
            assert [m["type"] for m in messages] == ["error", "list_sessions_response"]
            assert messages[0]["payload"]["code"] == "INVALID_MESSAGE"
            assert client.connected
            assert not websocket.is_closed

            await websocket.close()
            await asyncio.wait_for(task, 1)

    asyncio.run(scenario())


class CountingHub(ConnectionHub):
    """记录每次注销结果的连接中心"""

    def __init__(self):
        super().__init__()
        self.unregister_results = []

    def unregister(self, client):
        removed = super().unregister(client)
        self.unregister_results.append(removed)
        return removed


def test_broadcast_eviction_of_pumped_client():
    """测试广播塞满慢客户端后被剔除，读循环随后结束时不会重复注销"""

    async def scenario():
        websocket = FakeWebSocket(block_send=True)
        hub = CountingHub()
        router = ProtocolRouter(TmuxBridge(FakeTmuxClient()), require_token=False)
        client = ClientSession(websocket, hub, router, queue_size=1)
        hub.register(client)
        task = asyncio.create_task(client.run())
        await asyncio.sleep(0.01)

        # 第一条被写循环取走并阻塞在发送上，第二条占满队列，第三条触发剔除
        assert hub.broadcast(TerminalOutputPayload("dev", "one")) == 1
        await asyncio.sleep(0.01)
        assert hub.broadcast(TerminalOutputPayload("dev", "two")) == 1
        assert hub.broadcast(TerminalOutputPayload("dev", "three")) == 0

        assert hub.get_client(client.client_id) is None
        assert client.connected is False
        assert hub.get_stats()["evicted_total"] == 1

        # 底层连接断开，读循环结束
        await websocket.close()
        await asyncio.wait_for(task, 1)

        assert hub.unregister_results == [True, False]
        assert hub.unregister(client) is False
        assert hub.get_stats()["evicted_total"] == 1

    asyncio.run(scenario())
