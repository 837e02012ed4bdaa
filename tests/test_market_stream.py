"""
K 线行情流单元测试

覆盖范围：
  - 主题格式与地址选择
  - 连接 / 订阅 / 同主题不重复连接 / 切换主题
  - 推送帧分发（K 线转发、订阅确认、非法帧丢弃、回调异常不中断）
  - 断开与异常时的连接标记
  - 行情流服务（最新 K 线、前端监听队列、队列满时丢帧）
  - 前端 K 线转发（断开即注销监听、发送失败结束转发）
"""

import asyncio
import json
import os
import sys
from unittest.mock import AsyncMock, patch

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from crypto_service.config import settings
from crypto_service.layers.market_stream import (
    KlineStreamClient,
    build_topic,
    resolve_stream_url,
)
from crypto_service.services.stream_service import KlineStreamService

_CONNECT = "crypto_service.layers.market_stream.websockets.connect"


# ─────────────────────────────────────────────────────────
# 辅助：模拟 WebSocket 连接
# ─────────────────────────────────────────────────────────

class FakeSocket:
    def __init__(self, messages=(), hold_open=False, error=None):
        self.messages = list(messages)
        self.sent = []
        self.closed = False
        self._hold_open = hold_open
        self._error = error

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message
        if self._error is not None:
            raise self._error
        if self._hold_open:
            await asyncio.Event().wait()


class FailingSendSocket(FakeSocket):
    async def send(self, data):
        raise ConnectionResetError("send failed")


def _kline_frame(symbol="BTCUSDT", interval="5", start=1700000000000, close="37000.5"):
    return {
        "topic": f"kline.{interval}.{symbol}",
        "type": "snapshot",
        "ts": start + 1000,
        "data": [{
            "start": start,
            "end": start + 299999,
            "interval": interval,
            "open": "36990.1",
            "close": close,
            "high": "37010.0",
            "low": "36980.0",
            "volume": "12.5",
            "turnover": "462500.0",
            "confirm": False,
            "timestamp": start + 1000,
        }],
    }


# ─────────────────────────────────────────────────────────
# 1. 主题与地址
# ─────────────────────────────────────────────────────────

class TestTopic:
    def test_build_topic(self):
        assert build_topic("15", "BTCUSDT") == "kline.15.BTCUSDT"
        assert build_topic("D", "ETHUSDT") == "kline.D.ETHUSDT"

    def test_spot_url(self):
        assert resolve_stream_url("spot") == settings.BYBIT_WS_SPOT_URL

    def test_other_categories_use_linear(self):
        assert resolve_stream_url("linear") == settings.BYBIT_WS_LINEAR_URL
        assert resolve_stream_url("inverse") == settings.BYBIT_WS_LINEAR_URL


# ─────────────────────────────────────────────────────────
# 2. 连接与订阅
# ─────────────────────────────────────────────────────────

class TestConnect:
    def test_sends_single_subscribe(self):
        socket = FakeSocket()

        async def scenario():
            client = KlineStreamClient()
            with patch(_CONNECT, new=AsyncMock(return_value=socket)) as connect:
                await client.connect("spot", "BTCUSDT", "15", lambda frame: None)
                await client._listener
            connect.assert_awaited_once()
            assert connect.await_args.args[0] == settings.BYBIT_WS_SPOT_URL

        asyncio.run(scenario())
        assert socket.sent == [{"op": "subscribe", "args": ["kline.15.BTCUSDT"]}]

    def test_same_subscription_is_noop(self):
        socket = FakeSocket(hold_open=True)

        async def scenario():
            client = KlineStreamClient()
            with patch(_CONNECT, new=AsyncMock(return_value=socket)) as connect:
                await client.connect("linear", "ETHUSDT", "60", lambda frame: None)
                await client.connect("linear", "ETHUSDT", "60", lambda frame: None)
                assert connect.await_count == 1
                assert client.is_connected
                assert client.current_topic == "kline.60.ETHUSDT"
                await client.disconnect()

        asyncio.run(scenario())
        assert len(socket.sent) == 1

    def test_switching_topic_closes_previous(self):
        first = FakeSocket(hold_open=True)
        second = FakeSocket(hold_open=True)

        async def scenario():
            client = KlineStreamClient()
            with patch(_CONNECT, new=AsyncMock(side_effect=[first, second])):
                await client.connect("spot", "BTCUSDT", "15", lambda frame: None)
                await client.connect("spot", "BTCUSDT", "60", lambda frame: None)
            assert first.closed
            assert not second.closed
            assert client.current_topic == "kline.60.BTCUSDT"
            await client.disconnect()

        asyncio.run(scenario())
        assert second.sent == [{"op": "subscribe", "args": ["kline.60.BTCUSDT"]}]

    def test_connect_failure_reraises(self):
        async def scenario():
            client = KlineStreamClient()
            with patch(_CONNECT, new=AsyncMock(side_effect=OSError("refused"))):
                with pytest.raises(OSError):
                    await client.connect("spot", "BTCUSDT", "15", lambda frame: None)
            assert client.is_connected is False

        asyncio.run(scenario())

    def test_concurrent_connects_keep_single_socket(self):
        opened = []

        async def open_socket(url, **kwargs):
            await asyncio.sleep(0)
            socket = FakeSocket(hold_open=True)
            opened.append(socket)
            return socket

        async def scenario():
            client = KlineStreamClient()
            with patch(_CONNECT, new=open_socket):
                await asyncio.gather(
                    client.connect("spot", "BTCUSDT", "15", lambda frame: None),
                    client.connect("spot", "ETHUSDT", "60", lambda frame: None),
                )
            live = [s for s in opened if not s.closed]
            assert len(opened) == 2
            assert len(live) == 1
            assert live[0].sent == [{"op": "subscribe", "args": ["kline.60.ETHUSDT"]}]
            assert client.current_topic == "kline.60.ETHUSDT"
            await client.disconnect()

        asyncio.run(scenario())
        assert all(s.closed for s in opened)

    def test_subscribe_send_failure_closes_socket(self):
        socket = FailingSendSocket()

        async def scenario():
            client = KlineStreamClient()
            with patch(_CONNECT, new=AsyncMock(return_value=socket)):
                with pytest.raises(ConnectionResetError):
                    await client.connect("linear", "BTCUSDT", "15", lambda frame: None)
            assert client.is_connected is False
            assert client._ws is None
            assert client._listener is None

        asyncio.run(scenario())
        assert socket.closed

    def test_disconnect_resets_state(self):
        socket = FakeSocket(hold_open=True)

        async def scenario():
            client = KlineStreamClient()
            with patch(_CONNECT, new=AsyncMock(return_value=socket)):
                await client.connect("spot", "SOLUSDT", "5", lambda frame: None)
            await client.disconnect()
            await client.disconnect()
            assert client.is_connected is False
            assert client.current_topic is None
            assert client.symbol is None

        asyncio.run(scenario())
        assert socket.closed


# ─────────────────────────────────────────────────────────
# 3. 推送帧分发
# ─────────────────────────────────────────────────────────

class TestDispatch:
    def _collect(self, messages, callback=None, error=None):
        received = []
        socket = FakeSocket(messages, error=error)

        async def scenario():
            client = KlineStreamClient()
            with patch(_CONNECT, new=AsyncMock(return_value=socket)):
                await client.connect("spot", "BTCUSDT", "5", callback or received.append)
                await client._listener
            return client

        client = asyncio.run(scenario())
        return client, received

    def test_forwards_kline_frames_in_order(self):
        frames = [_kline_frame(close="1"), _kline_frame(close="2")]
        _, received = self._collect([json.dumps(f) for f in frames])
        assert [f["data"][0]["close"] for f in received] == ["1", "2"]
        assert received[0]["topic"] == "kline.5.BTCUSDT"

    def test_ignores_non_kline_frames(self):
        messages = [
            json.dumps({"op": "subscribe", "success": True, "conn_id": "abc"}),
            json.dumps({"op": "pong"}),
            json.dumps({"topic": "tickers.BTCUSDT", "data": {}}),
            json.dumps(["not", "a", "dict"]),
        ]
        _, received = self._collect(messages)
        assert received == []

    def test_malformed_frame_dropped(self):
        messages = ["{not json", json.dumps(_kline_frame())]
        _, received = self._collect(messages)
        assert len(received) == 1

    def test_callback_error_does_not_stop_listener(self):
        calls = []

        def flaky(frame):
            calls.append(frame)
            if len(calls) == 1:
                raise RuntimeError("boom")

        messages = [json.dumps(_kline_frame(close="1")), json.dumps(_kline_frame(close="2"))]
        self._collect(messages, callback=flaky)
        assert len(calls) == 2

    def test_async_callback_awaited(self):
        received = []

        async def handler(frame):
            await asyncio.sleep(0)
            received.append(frame["topic"])

        self._collect([json.dumps(_kline_frame())], callback=handler)
        assert received == ["kline.5.BTCUSDT"]

    def test_stream_end_clears_flag(self):
        client, _ = self._collect([])
        assert client.is_connected is False

    def test_stream_error_clears_flag(self):
        client, received = self._collect(
            [json.dumps(_kline_frame())], error=ConnectionResetError("reset")
        )
        assert client.is_connected is False
        assert len(received) == 1


# ─────────────────────────────────────────────────────────
# 4. 行情流服务
# ─────────────────────────────────────────────────────────

class TestStreamService:
    def test_latest_candle_and_listeners(self):
        frame = _kline_frame(close="37123.4")
        socket = FakeSocket([json.dumps(frame)])

        async def scenario():
            svc = KlineStreamService(client=KlineStreamClient())
            queue = svc.register_listener()
            with patch(_CONNECT, new=AsyncMock(return_value=socket)):
                state = await svc.subscribe("spot", "btcusdt", "5")
                await svc._client._listener
            assert state["topic"] == "kline.5.BTCUSDT"
            forwarded = queue.get_nowait()
            svc.unregister_listener(queue)
            return svc, forwarded

        svc, forwarded = asyncio.run(scenario())
        assert forwarded == frame
        assert svc.latest()["close"] == pytest.approx(37123.4)
        assert svc.latest()["symbol"] == "BTCUSDT"
        assert svc.listener_count == 0

    def test_unsubscribe_clears_latest(self):
        socket = FakeSocket([json.dumps(_kline_frame())], hold_open=True)

        async def scenario():
            svc = KlineStreamService(client=KlineStreamClient())
            with patch(_CONNECT, new=AsyncMock(return_value=socket)):
                await svc.subscribe("linear", "BTCUSDT", "5")
                await asyncio.sleep(0.01)
            assert svc.latest() is not None
            await svc.unsubscribe()
            return svc

        svc = asyncio.run(scenario())
        assert svc.latest() is None
        assert svc.status()["connected"] is False

    def test_full_listener_queue_drops_only_its_frame(self):
        svc = KlineStreamService(client=KlineStreamClient())
        slow = svc.register_listener()
        fast = svc.register_listener()
        for i in range(slow.maxsize):
            slow.put_nowait({"seq": i})

        frame = _kline_frame(close="37200.0")
        svc._on_kline(frame)

        assert slow.qsize() == slow.maxsize
        assert all(slow.get_nowait() != frame for _ in range(slow.maxsize))
        assert fast.get_nowait() == frame
        assert svc.latest()["close"] == pytest.approx(37200.0)


# ─────────────────────────────────────────────────────────
# 5. 前端 K 线转发
# ─────────────────────────────────────────────────────────

class FakeUiSocket:
    """模拟前端连接：disconnect_after 秒后收到断开消息，为 None 时一直保持连接"""

    def __init__(self, disconnect_after=None, send_error=None):
        self.accepted = False
        self.sent = []
        self._disconnect_after = disconnect_after
        self._send_error = send_error

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self._send_error is not None:
            raise self._send_error
        self.sent.append(data)

    async def receive(self):
        if self._disconnect_after is None:
            await asyncio.Event().wait()
        await asyncio.sleep(self._disconnect_after)
        return {"type": "websocket.disconnect", "code": 1000}


class TestRelay:
    def _run(self, websocket, before_disconnect=None):
        from crypto_service.routers.stream import relay_klines

        svc = KlineStreamService(client=KlineStreamClient())

        async def scenario():
            with patch("crypto_service.routers.stream.get_stream_service", return_value=svc):
                relay = asyncio.create_task(relay_klines(websocket))
                await asyncio.sleep(0.01)
                if before_disconnect is not None:
                    before_disconnect(svc)
                await asyncio.wait_for(relay, timeout=2)

        asyncio.run(scenario())
        return svc

    def test_client_disconnect_unregisters_listener(self):
        websocket = FakeUiSocket(disconnect_after=0.05)
        svc = self._run(websocket)
        assert websocket.accepted
        assert websocket.sent == []
        assert svc.listener_count == 0

    def test_frames_forwarded_until_disconnect(self):
        websocket = FakeUiSocket(disconnect_after=0.05)
        frame = _kline_frame(close="36888.8")

        def push(svc):
            assert svc.listener_count == 1
            svc._on_kline(frame)

        svc = self._run(websocket, before_disconnect=push)
        assert websocket.sent == [frame]
        assert svc.listener_count == 0

    def test_send_failure_ends_relay(self):
        websocket = FakeUiSocket(send_error=RuntimeError("socket gone"))
        svc = self._run(websocket, before_disconnect=lambda s: s._on_kline(_kline_frame()))
        assert websocket.sent == []
        assert svc.listener_count == 0
