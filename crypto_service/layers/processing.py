"""
数据处理层
对 WebSocket 推送的 K 线帧与外部传入的交易对符号做清洗、格式化、标准化。
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from crypto_service.layers.market_stream import KLINE_TOPIC_PREFIX

logger = logging.getLogger(__name__)

KLINE_COLUMNS = [
    "symbol", "interval", "start", "end",
    "open", "high", "low", "close", "volume", "turnover",
    "confirm", "timestamp",
]
_NUMERIC_COLS = ["open", "high", "low", "close", "volume", "turnover"]
_TIME_COLS = ["start", "end", "timestamp"]

# 按顺序剥离的计价后缀与分隔符
_SYMBOL_NOISE = ("USDT", "USD", "/", "-")


def parse_topic(topic: str) -> Optional[Tuple[str, str]]:
    """kline.{interval}.{symbol} → (interval, symbol)，非 K 线主题返回 None"""
    if not topic or not topic.startswith(KLINE_TOPIC_PREFIX):
        return None
    parts = topic.split(".", 2)
    if len(parts) != 3 or not parts[1] or not parts[2]:
        return None
    return parts[1], parts[2]


def normalize_coin_symbol(symbol: str) -> str:
    """BTCUSDT / BTC-USD / btc/usdt → BTC"""
    normalized = str(symbol).upper()
    for noise in _SYMBOL_NOISE:
        normalized = normalized.replace(noise, "")
    return normalized


class ProcessingLayer:
    """数据处理层：K 线帧标准化"""

    def normalize_kline_frame(self, frame: Dict[str, Any]) -> pd.DataFrame:
        """
        将 Bybit K 线推送帧标准化为 DataFrame

        帧结构：{"topic": "kline.5.BTCUSDT", "data": [{start, end, interval, open, ...}], "ts": ..., "type": "snapshot"}
        标准列见 KLINE_COLUMNS，时间列转换为 UTC 时间戳
        """
        rows = frame.get("data") or []
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            return pd.DataFrame(columns=KLINE_COLUMNS)

        df = pd.DataFrame(rows)

        parsed = parse_topic(str(frame.get("topic", "")))
        if parsed is not None:
            interval, symbol = parsed
            df["symbol"] = symbol
            if "interval" not in df.columns:
                df["interval"] = interval

        for col in KLINE_COLUMNS:
            if col not in df.columns:
                df[col] = None

        # 类型转换（Bybit 以字符串下发价格与成交量）
        for col in _NUMERIC_COLS:
            df[col] = pd.to_numeric(df[col], errors="coerce")
        for col in _TIME_COLS:
            df[col] = pd.to_datetime(
                pd.to_numeric(df[col], errors="coerce"), unit="ms", utc=True
            )
        df["confirm"] = df["confirm"].fillna(False).astype(bool)
        df["interval"] = df["interval"].astype(str)

        df = df.dropna(subset=["start"])
        # 同一根 K 线多次推送，保留最后一次
        df = df.drop_duplicates(subset=["start"], keep="last")
        df = df.sort_values("start").reset_index(drop=True)

        return df[KLINE_COLUMNS]

    def to_records(self, df: pd.DataFrame) -> List[Dict[str, Any]]:
        """DataFrame 转换为可 JSON 序列化的字典列表"""
        if df.empty:
            return []
        out = df.copy()
        for col in _TIME_COLS:
            if col in out.columns:
                out[col] = out[col].map(lambda ts: ts.isoformat() if pd.notna(ts) else None)
        out = out.astype(object).where(pd.notna(out), None)
        return out.to_dict(orient="records")

    def latest_candle(self, frame: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """推送帧中最新的一根 K 线（按 start 排序），无数据时返回 None"""
        records = self.to_records(self.normalize_kline_frame(frame))
        return records[-1] if records else None


# ── 模块级别单例 ──────────────────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor
