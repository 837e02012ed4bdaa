"""
行情流层 – Bybit 公共 WebSocket K 线订阅
同一时刻只维护一个连接、一个订阅主题：
  连接 → 发送一次 subscribe → 解码推送帧 → 以 "kline." 开头的主题转发给回调
出错或断开时只记录日志并将连接标记置为 False，不做自动重连。
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosedOK

from crypto_service.config import settings

logger = logging.getLogger(__name__)

KLINE_TOPIC_PREFIX = "kline."

KlineCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


def build_topic(interval: str, symbol: str) -> str:
    """K 线主题格式：kline.{interval}.{symbol}"""
    return f"{KLINE_TOPIC_PREFIX}{interval}.{symbol}"


def resolve_stream_url(category: str) -> str:
    """spot 使用现货地址，其余类别一律使用 linear（USDT 永续）地址"""
    if category == "spot":
        return settings.BYBIT_WS_SPOT_URL
    return settings.BYBIT_WS_LINEAR_URL


class KlineStreamClient:
    """单主题 K 线 WebSocket 客户端"""

    def __init__(self):
        self._ws = None
        self._listener: Optional[asyncio.Task] = None
        self._connected = False
        self._category: Optional[str] = None
        self._symbol: Optional[str] = None
        self._interval: Optional[str] = None
        # connect / disconnect 串行执行，保证同一时刻只有一个连接
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def category(self) -> Optional[str]:
        return self._category

    @property
    def symbol(self) -> Optional[str]:
        return self._symbol

    @property
    def interval(self) -> Optional[str]:
        return self._interval

    @property
    def current_topic(self) -> Optional[str]:
        if self._symbol is None or self._interval is None:
            return None
        return build_topic(self._interval, self._symbol)

    # ── 连接管理 ──────────────────────────────────────────

    async def connect(
        self,
        category: str,
        symbol: str,
        interval: str,
        on_kline: KlineCallback,
    ) -> None:
        """
        连接并订阅 kline.{interval}.{symbol}

        Args:
            category: 'spot' 或 'linear'
            symbol: 交易对，如 'BTCUSDT'
            interval: K 线周期，如 '15', '60', '240', 'D'
            on_kline: 收到 K 线推送时的回调，参数为完整的推送帧（含 topic 与 data）
        """
        async with self._lock:
            if (
                self._connected
                and self._category == category
                and self._symbol == symbol
                and self._interval == interval
            ):
                return

            await self._close()

            self._category = category
            self._symbol = symbol
            self._interval = interval
            url = resolve_stream_url(category)

            try:
                self._ws = await websockets.connect(
                    url, ping_interval=settings.BYBIT_WS_PING_INTERVAL
                )
                self._connected = True

                # Bybit 单次订阅最多 10 个参数，这里只订阅当前周期
                topic = build_topic(interval, symbol)
                logger.info(f"📡 订阅 K 线主题: {topic}（{url}）")
                await self._ws.send(json.dumps({"op": "subscribe", "args": [topic]}))

                self._listener = asyncio.create_task(self._listen(on_kline))
            except Exception as exc:
                logger.error(f"❌ WebSocket 连接失败: {exc}")
                self._connected = False
                ws, self._ws = self._ws, None
                if ws is not None:
                    await self._close_socket(ws)
                raise

    async def disconnect(self) -> None:
        """取消监听、关闭连接并清空当前订阅信息（可重复调用）"""
        async with self._lock:
            await self._close()

    @staticmethod
    async def _close_socket(ws) -> None:
        try:
            await ws.close()
        except Exception as exc:
            logger.debug(f"关闭 WebSocket 时出错: {exc}")

    async def _close(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None and not listener.done():
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass

        ws, self._ws = self._ws, None
        if ws is not None:
            await self._close_socket(ws)

        self._connected = False
        self._category = None
        self._symbol = None
        self._interval = None

    # ── 消息处理 ──────────────────────────────────────────

    async def _listen(self, on_kline: KlineCallback) -> None:
        try:
            async for message in self._ws:
                await self.handle_message(message, on_kline)
            logger.info("WebSocket 连接已关闭")
        except ConnectionClosedOK:
            logger.info("WebSocket 连接已关闭")
        except Exception as exc:
            # 不自动重连，由调用方决定是否重新订阅
            logger.error(f"❌ WebSocket 错误: {exc}")
        finally:
            self._connected = False

    async def handle_message(self, message: Union[str, bytes], on_kline: KlineCallback) -> None:
        """解码单个推送帧并按主题分发，解析或回调异常只记录日志"""
        try:
            data = json.loads(message)
            if not isinstance(data, dict):
                return

            topic = data.get("topic")
            if topic is not None and str(topic).startswith(KLINE_TOPIC_PREFIX):
                logger.debug(f"收到 K 线推送: {topic}")
                result = on_kline(data)
                if inspect.isawaitable(result):
                    await result
            elif data.get("op") == "subscribe" and data.get("success") is True:
                logger.info("✅ K 线主题订阅成功")
            elif data.get("op") is not None:
                logger.debug(f"收到 WebSocket 消息: {data}")
        except Exception as exc:
            logger.error(f"WebSocket 消息处理失败: {exc}")


# ── 模块级别单例 ──────────────────────────────────────────
_client: Optional[KlineStreamClient] = None


def get_kline_stream_client() -> KlineStreamClient:
    global _client
    if _client is None:
        _client = KlineStreamClient()
    return _client
