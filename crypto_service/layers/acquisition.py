"""
数据获取层
通过 Bybit V5 公共 REST 接口拉取最新成交价，供模拟资产服务的价格缓存使用。
"""

import logging
from typing import Any, Dict, Optional

import requests

from crypto_service.config import settings

logger = logging.getLogger(__name__)

_TICKERS_PATH = "/v5/market/tickers"


class PriceAcquisitionError(RuntimeError):
    """行情接口返回错误码"""


class AcquisitionLayer:
    """数据获取层：封装 Bybit 行情接口"""

    def __init__(self, session: Optional[requests.Session] = None):
        self._session = session or requests.Session()
        self._base_url = settings.BYBIT_REST_URL.rstrip("/")

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = self._session.get(
            f"{self._base_url}{path}",
            params=params,
            timeout=settings.HTTP_TIMEOUT,
        )
        response.raise_for_status()
        payload = response.json()
        if payload.get("retCode", 0) != 0:
            raise PriceAcquisitionError(
                f"Bybit 返回错误 {payload.get('retCode')}: {payload.get('retMsg')}"
            )
        return payload

    def get_ticker_price(self, symbol: str, category: str = "spot") -> Optional[float]:
        """
        获取交易对最新成交价

        Args:
            symbol: 交易对，如 'BTCUSDT'
            category: 'spot' / 'linear'

        Returns:
            最新价；接口未返回可用价格时为 None
        """
        payload = self._get(_TICKERS_PATH, {"category": category, "symbol": symbol})
        tickers = (payload.get("result") or {}).get("list") or []
        if not tickers:
            logger.warning(f"行情接口未返回 {symbol} 的数据")
            return None
        try:
            return float(tickers[0].get("lastPrice"))
        except (TypeError, ValueError):
            logger.warning(f"{symbol} 最新价无法解析: {tickers[0].get('lastPrice')!r}")
            return None


# ── 模块级别单例 ──────────────────────────────────────────
_acquisition: Optional[AcquisitionLayer] = None


def get_acquisition_layer() -> AcquisitionLayer:
    global _acquisition
    if _acquisition is None:
        _acquisition = AcquisitionLayer()
    return _acquisition
