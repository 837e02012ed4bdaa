"""
K 线行情流服务
把行情流层的单一订阅暴露给 HTTP / WebSocket 接口：
保存最新一根 K 线，并把推送帧转发给已连接的前端监听队列。
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from crypto_service.layers.market_stream import (
    KlineStreamClient,
    build_topic,
    get_kline_stream_client,
)
from crypto_service.layers.processing import get_processing_layer

logger = logging.getLogger(__name__)

_LISTENER_QUEUE_SIZE = 100


class KlineStreamService:
    """K 线行情流业务服务"""

    def __init__(self, client: Optional[KlineStreamClient] = None):
        self._client = client or get_kline_stream_client()
        self._proc = get_processing_layer()
        self._latest: Optional[Dict[str, Any]] = None
        self._listeners: Set[asyncio.Queue] = set()

    async def subscribe(self, category: str, symbol: str, interval: str) -> Dict[str, Any]:
        """订阅 kline.{interval}.{symbol}；切换主题时清空上一主题的最新 K 线"""
        symbol = symbol.upper()
        if self._client.current_topic != build_topic(interval, symbol):
            self._latest = None
        await self._client.connect(
            category=category,
            symbol=symbol,
            interval=interval,
            on_kline=self._on_kline,
        )
        return self.status()

    async def unsubscribe(self) -> None:
        await self._client.disconnect()
        self._latest = None

    def status(self) -> Dict[str, Any]:
        return {
            "connected": self._client.is_connected,
            "topic": self._client.current_topic,
            "category": self._client.category,
            "symbol": self._client.symbol,
            "interval": self._client.interval,
            "latest": self._latest,
        }

    def latest(self) -> Optional[Dict[str, Any]]:
        return self._latest

    # ── 推送处理 ──────────────────────────────────────────

    def _on_kline(self, frame: Dict[str, Any]) -> None:
        candle = self._proc.latest_candle(frame)
        if candle is not None:
            self._latest = candle

        for queue in list(self._listeners):
            try:
                queue.put_nowait(frame)
            except asyncio.QueueFull:
                logger.debug("前端监听队列已满，丢弃本帧")

    def register_listener(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=_LISTENER_QUEUE_SIZE)
        self._listeners.add(queue)
        return queue

    def unregister_listener(self, queue: asyncio.Queue) -> None:
        self._listeners.discard(queue)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


# ── 模块级别单例 ──────────────────────────────────────────
_stream_service: Optional[KlineStreamService] = None


def get_stream_service() -> KlineStreamService:
    global _stream_service
    if _stream_service is None:
        _stream_service = KlineStreamService()
    return _stream_service
