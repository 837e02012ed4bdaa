"""
模拟资产服务
为演示模式提供账户余额、价格缓存、日内盈亏、图表序列与持仓列表。
余额全部为模拟数据；价格通过数据获取层从交易所拉取并按 PRICE_CACHE_TTL 缓存。
持久化的只有"是否使用模拟数据"开关与日初余额（含记录日期）。
"""

import asyncio
import logging
import math
from collections.abc import Mapping
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from crypto_service.config import settings
from crypto_service.layers.acquisition import AcquisitionLayer, get_acquisition_layer
from crypto_service.layers.charts import ChartLayer, get_chart_layer, get_days_for_period
from crypto_service.layers.preferences import (
    PREF_BALANCE_AT_START_OF_DAY,
    PREF_LAST_DAY_CHECKED,
    PREF_USE_MOCK_DATA,
    PreferenceStore,
    get_preference_store,
)
from crypto_service.layers.processing import normalize_coin_symbol
from crypto_service.models.chart import ChartPoint

logger = logging.getLogger(__name__)

# ── 账户与初始值 ─────────────────────────────────────────
ACCOUNT_FUND = "FUND"
ACCOUNT_UNIFIED = "UNIFIED"
ACCOUNT_TYPES = (ACCOUNT_FUND, ACCOUNT_UNIFIED)

INITIAL_FUNDING_USDT = 0.0
INITIAL_UNIFIED_USDT = 0.0
INITIAL_BALANCE = INITIAL_FUNDING_USDT + INITIAL_UNIFIED_USDT
INITIAL_BTC = 0.15

TRACKED_COINS = ("BTC", "ETH", "SOL", "LTC")
DEFAULT_PRICES: Dict[str, float] = {
    "BTC": 91000.0,
    "ETH": 3000.0,
    "SOL": 150.0,
    "LTC": 80.0,
}
DEFAULT_ENTRY_PRICES: Dict[str, float] = {
    "SOL": 124.5,
    "LTC": 74.5,
}

TRADING_STATS: Dict[str, str] = {
    "totalProfit": "+1,234.56",
    "totalLoss": "-456.78",
    "netPnl": "+777.78",
    "roi": "+6.22%",
    "winRate": "68.5%",
    "totalTrades": "127",
}


class TransferError(ValueError):
    """划转金额非法、余额不足或账户类型未知"""


class ValueNotifier:
    """
    持有一个值，值变化时同步通知所有监听者

    identity=True 时按对象身份判断变化：每次赋予新对象（如新列表）都会通知，
    即使内容与旧值相等。
    """

    def __init__(self, value: Any, identity: bool = False):
        self._value = value
        self._identity = identity
        self._listeners: List[Callable[[Any], None]] = []

    @property
    def value(self) -> Any:
        return self._value

    @value.setter
    def value(self, new_value: Any) -> None:
        unchanged = new_value is self._value if self._identity else new_value == self._value
        if unchanged:
            return
        self._value = new_value
        for listener in list(self._listeners):
            try:
                listener(new_value)
            except Exception as exc:
                logger.error(f"监听回调异常: {exc}", exc_info=True)

    def subscribe(self, listener: Callable[[Any], None]) -> Callable[[], None]:
        """注册监听者，返回取消注册的函数"""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe


def _parse_day(raw: Optional[str]) -> Optional[date]:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


class MockPortfolioService:
    """模拟资产业务服务"""

    def __init__(
        self,
        preferences: Optional[PreferenceStore] = None,
        acquisition: Optional[AcquisitionLayer] = None,
        charts: Optional[ChartLayer] = None,
        clock: Optional[Callable[[], datetime]] = None,
        use_mock_data: Optional[bool] = None,
    ):
        self._prefs = preferences or get_preference_store()
        self._acq = acquisition or get_acquisition_layer()
        self._charts = charts or get_chart_layer()
        self._clock = clock or datetime.now

        self._default_use_mock_data = settings.USE_MOCK_DATA_DEFAULT
        self._use_mock_data = (
            self._default_use_mock_data if use_mock_data is None else use_mock_data
        )

        self._prices = dict(DEFAULT_PRICES)
        self._entry_prices = dict(DEFAULT_ENTRY_PRICES)
        self._last_price_update: Optional[datetime] = None
        self._price_cache_ttl = timedelta(seconds=settings.PRICE_CACHE_TTL)

        self._funding_usdt = INITIAL_FUNDING_USDT
        self._unified_usdt = INITIAL_UNIFIED_USDT
        self._unrealized_pnl = 0.0

        self._balance_at_start_of_day: Optional[float] = None
        self._last_day_checked: Optional[date] = None
        self._start_of_day_initialized = False

        self._positions: List[Dict[str, Any]] = []
        self.balance_notifier = ValueNotifier(0.0)
        self.positions_notifier = ValueNotifier([], identity=True)

    def _today(self) -> date:
        return self._clock().date()

    # ── 模拟数据开关 ──────────────────────────────────────

    @property
    def use_mock_data(self) -> bool:
        return self._use_mock_data

    async def init(self, force_load_from_prefs: bool = False) -> None:
        """
        启动初始化：加载模拟数据开关并初始化日初余额

        若开关在构造时被显式改成非默认值（且未强制从存储加载），则以内存值为准写回存储。
        """
        try:
            if not force_load_from_prefs and self._use_mock_data != self._default_use_mock_data:
                await self._prefs.set(PREF_USE_MOCK_DATA, self._use_mock_data)
                return

            stored = await self._prefs.get_bool(PREF_USE_MOCK_DATA)
            if stored is not None:
                self._use_mock_data = stored
        except Exception as exc:
            logger.warning(f"加载模拟数据开关失败，沿用当前值 {self._use_mock_data}: {exc}")

        await self._initialize_start_of_day_balance()

    async def reset(self) -> None:
        """删除已保存的开关，恢复默认值"""
        try:
            await self._prefs.remove(PREF_USE_MOCK_DATA)
        except Exception as exc:
            logger.warning(f"删除模拟数据开关失败: {exc}")
        self._use_mock_data = self._default_use_mock_data

    async def set_use_mock_data(self, use_mock: bool) -> None:
        self._use_mock_data = use_mock
        try:
            await self._prefs.set(PREF_USE_MOCK_DATA, use_mock)
        except Exception as exc:
            logger.warning(f"保存模拟数据开关失败: {exc}")

    # ── 价格缓存 ──────────────────────────────────────────

    def _price_cache_fresh(self) -> bool:
        return (
            self._last_price_update is not None
            and self._clock() - self._last_price_update < self._price_cache_ttl
        )

    async def _update_prices(self, force: bool = False) -> None:
        if not force and self._price_cache_fresh():
            return

        try:
            fetched = {
                coin: self._acq.get_ticker_price(f"{coin}USDT")
                for coin in TRACKED_COINS
            }
        except Exception as exc:
            # 保留上次价格，不更新时间戳，下次请求会重试
            logger.warning(f"⚠️ 价格更新失败: {exc}")
            return

        for coin, price in fetched.items():
            if price is not None and price > 0:
                self._prices[coin] = price
                self._last_price_update = self._clock()

    def _coin_key(self, coin: str) -> str:
        key = normalize_coin_symbol(coin)
        if key not in self._prices:
            raise KeyError(coin)
        return key

    async def get_price(self, coin: str, force: bool = False) -> float:
        """获取币种价格（缓存过期或 force 时先从交易所刷新）"""
        key = self._coin_key(coin)
        await self._update_prices(force=force)
        return self._prices[key]

    def cached_price(self, coin: str) -> float:
        """同步读取缓存价格，不触发刷新"""
        return self._prices[self._coin_key(coin)]

    @property
    def prices(self) -> Dict[str, float]:
        return dict(self._prices)

    @property
    def last_price_update(self) -> Optional[datetime]:
        return self._last_price_update

    def set_price(self, coin: str, price: float) -> None:
        """手动设置价格（仅接受正数）"""
        key = self._coin_key(coin)
        if price > 0:
            self._prices[key] = price
            self._last_price_update = self._clock()

    async def refresh_prices(self) -> None:
        await self._update_prices(force=True)

    def update_prices_from_list(self, items: Iterable[Any]) -> None:
        """
        用行情列表同步价格（与首页行情列表保持一致）

        元素可以是 {"symbol"/"pair": ..., "price": ...} 字典，也可以是带 symbol / price 属性的对象。
        """
        for item in items:
            if isinstance(item, Mapping):
                symbol = item.get("symbol") or item.get("pair") or ""
                raw_price = item.get("price") or 0
            else:
                symbol = getattr(item, "symbol", "") or ""
                raw_price = getattr(item, "price", 0) or 0
            try:
                price = float(raw_price)
            except (TypeError, ValueError):
                continue

            coin = normalize_coin_symbol(symbol)
            if coin in self._prices and price > 0:
                self._prices[coin] = price
                self._last_price_update = self._clock()

    # ── 开仓价 ────────────────────────────────────────────

    @property
    def entry_prices(self) -> Dict[str, float]:
        return dict(self._entry_prices)

    def entry_price(self, coin: str) -> float:
        return self._entry_prices[normalize_coin_symbol(coin)]

    def set_entry_price(self, coin: str, price: float) -> None:
        key = normalize_coin_symbol(coin)
        if key not in self._entry_prices:
            raise KeyError(coin)
        if price > 0:
            self._entry_prices[key] = price

    # ── 余额 ──────────────────────────────────────────────

    @property
    def funding_balance(self) -> float:
        return self._funding_usdt

    @property
    def available_usd(self) -> float:
        """可用于现货交易的余额 = 资金账户 USDT"""
        return self._funding_usdt

    @property
    def unified_trading_usd(self) -> float:
        return self._unified_usdt

    @property
    def used_usd(self) -> float:
        """挂单占用（模拟数据中恒为 0）"""
        return 0.0

    @property
    def unrealized_pnl(self) -> float:
        return self._unrealized_pnl

    @property
    def unified_trading_balance(self) -> float:
        return self._unified_usdt + self._unrealized_pnl

    @property
    def total_usd(self) -> float:
        return self._funding_usdt + self._unified_usdt + self._unrealized_pnl

    @property
    def total_btc(self) -> float:
        btc_price = self._prices["BTC"]
        if btc_price > 0:
            return self.total_usd / btc_price
        return INITIAL_BTC

    def _notify_balance(self) -> None:
        self.balance_notifier.value = self.unified_trading_balance

    def realize_pnl(self, pnl: float) -> None:
        """平仓时把已实现盈亏计入统一交易账户"""
        self._unified_usdt += pnl
        self._notify_balance()

    def set_unrealized_pnl(self, pnl: float) -> None:
        self._unrealized_pnl = pnl
        self._notify_balance()

    async def transfer_between_accounts(
        self,
        coin: str,
        amount: Any,
        from_account_type: str,
        to_account_type: str,
    ) -> Dict[str, str]:
        """
        资金账户（FUND）与统一交易账户（UNIFIED）间划转

        Raises:
            TransferError: 金额 ≤ 0 或无法解析、账户类型未知、转出账户余额不足
        """
        try:
            transfer_amount = float(amount)
        except (TypeError, ValueError):
            transfer_amount = 0.0
        if not math.isfinite(transfer_amount) or transfer_amount <= 0:
            raise TransferError("划转金额必须大于零")

        for account in (from_account_type, to_account_type):
            if account not in ACCOUNT_TYPES:
                raise TransferError(f"不支持的账户类型: {account}")

        if from_account_type == ACCOUNT_FUND:
            if transfer_amount > self._funding_usdt:
                raise TransferError("资金账户余额不足")
            self._funding_usdt -= transfer_amount
        else:
            if transfer_amount > self._unified_usdt:
                raise TransferError("统一交易账户余额不足")
            self._unified_usdt -= transfer_amount

        if to_account_type == ACCOUNT_FUND:
            self._funding_usdt += transfer_amount
        else:
            self._unified_usdt += transfer_amount

        logger.info(f"模拟划转 {transfer_amount} {coin}: {from_account_type} → {to_account_type}")
        self._notify_balance()

        await asyncio.sleep(settings.MOCK_TRANSFER_DELAY)

        return {
            "transferId": str(int(self._clock().timestamp() * 1000)),
            "status": "SUCCESS",
        }

    def reset_balances(self) -> None:
        self._funding_usdt = INITIAL_FUNDING_USDT
        self._unified_usdt = INITIAL_UNIFIED_USDT
        self._unrealized_pnl = 0.0
        self._notify_balance()

    async def add_funding_balance(self, amount: float) -> None:
        """充值到资金账户；首次有余额时顺带确定日初余额"""
        if amount <= 0:
            return

        self._funding_usdt += amount
        balance_after = self.total_usd

        if (
            not self._start_of_day_initialized
            or self._balance_at_start_of_day is None
            or self._balance_at_start_of_day == 0.0
        ):
            today = self._today()
            self._balance_at_start_of_day = self._start_balance_from(balance_after)
            self._last_day_checked = today
            self._start_of_day_initialized = True
            await self._persist_start_of_day(today)

        self._notify_balance()

    def get_balance_summary(self) -> Dict[str, float]:
        return {
            "totalUsd": self.total_usd,
            "totalBtc": self.total_btc,
            "fundingBalance": self.funding_balance,
            "availableUsd": self.available_usd,
            "usedUsd": self.used_usd,
            "unifiedTradingUsd": self.unified_trading_usd,
            "unifiedTradingBalance": self.unified_trading_balance,
            "unrealizedPnl": self.unrealized_pnl,
        }

    # ── 日初余额与今日盈亏 ────────────────────────────────

    def _start_balance_from(self, current: float) -> float:
        # 日初余额不含浮动盈亏；扣除后不为正时退回当前余额
        start = current - self._unrealized_pnl
        return start if start > 0 else current

    async def _persist_start_of_day(self, today: date) -> None:
        try:
            await self._prefs.set(PREF_BALANCE_AT_START_OF_DAY, self._balance_at_start_of_day)
            await self._prefs.set(PREF_LAST_DAY_CHECKED, today.isoformat())
        except Exception as exc:
            logger.debug(f"保存日初余额失败: {exc}")

    async def _initialize_start_of_day_balance(self) -> None:
        if self._start_of_day_initialized:
            return

        today = self._today()
        try:
            saved_day = _parse_day(await self._prefs.get_str(PREF_LAST_DAY_CHECKED))
            saved_balance = await self._prefs.get_float(PREF_BALANCE_AT_START_OF_DAY)
            current = self.total_usd

            if saved_day != today:
                # 新的一天：余额为 0 时暂不确定日初余额，等首次充值
                if current > 0:
                    self._balance_at_start_of_day = self._start_balance_from(current)
                    self._last_day_checked = today
                    await self._prefs.set(PREF_BALANCE_AT_START_OF_DAY, self._balance_at_start_of_day)
                    await self._prefs.set(PREF_LAST_DAY_CHECKED, today.isoformat())
                else:
                    self._balance_at_start_of_day = None
                    self._last_day_checked = today
            else:
                self._last_day_checked = saved_day
                if current > 0:
                    self._balance_at_start_of_day = saved_balance
                else:
                    # 已保存的日初余额与当前空账户不匹配，清除
                    self._balance_at_start_of_day = None
                    await self._prefs.remove(PREF_BALANCE_AT_START_OF_DAY)

            self._start_of_day_initialized = True
        except Exception as exc:
            logger.warning(f"初始化日初余额失败: {exc}")
            current = self.total_usd
            self._balance_at_start_of_day = current if current > 0 else None
            self._last_day_checked = today
            self._start_of_day_initialized = True

    async def _roll_over_day(self) -> None:
        today = self._today()
        if self._last_day_checked == today:
            return
        current = self.total_usd
        if current > 0:
            self._balance_at_start_of_day = self._start_balance_from(current)
            self._last_day_checked = today
            await self._persist_start_of_day(today)
        else:
            self._balance_at_start_of_day = None
            self._last_day_checked = today

    async def get_pnl_today(self) -> float:
        """今日盈亏 = 当前总资产 − 日初余额；日初余额未确定时为 0"""
        await self._initialize_start_of_day_balance()
        if self._balance_at_start_of_day is None:
            return 0.0

        await self._roll_over_day()

        current = self.total_usd
        start = self._balance_at_start_of_day
        if start is None:
            start = current
        return current - start

    async def get_balance_at_start_of_day(self) -> float:
        """日初余额；未确定时返回当前总资产（使今日收益率为 0%）"""
        await self._initialize_start_of_day_balance()
        if self._balance_at_start_of_day is None:
            return self.total_usd

        await self._roll_over_day()

        if self._balance_at_start_of_day is None:
            return self.total_usd
        return self._balance_at_start_of_day

    async def reset_start_of_day_balance(self) -> None:
        self._balance_at_start_of_day = None
        self._last_day_checked = None
        self._start_of_day_initialized = False
        try:
            await self._prefs.remove(PREF_BALANCE_AT_START_OF_DAY)
            await self._prefs.remove(PREF_LAST_DAY_CHECKED)
        except Exception as exc:
            logger.debug(f"删除日初余额失败: {exc}")

    # ── 图表 ──────────────────────────────────────────────

    def get_days_for_period(self, period: str) -> int:
        return get_days_for_period(period)

    def get_portfolio_history(self, period: str) -> List[ChartPoint]:
        return self._charts.portfolio_history(period, self.total_usd)

    def get_pnl_history(self, period: str) -> List[ChartPoint]:
        return self._charts.pnl_history(period)

    def get_daily_pnl_history(self, period: str) -> List[ChartPoint]:
        return self._charts.daily_pnl_history(period)

    def get_cumulative_daily_pnl_history(self, period: str) -> List[ChartPoint]:
        return self._charts.cumulative_daily_pnl_history(period)

    def get_order_value_history(
        self, period: str, is_futures: bool = False
    ) -> Dict[str, List[ChartPoint]]:
        return self._charts.order_value_history(period, self.total_usd, is_futures=is_futures)

    # ── 资产分布与统计 ────────────────────────────────────

    def get_asset_distribution(self) -> Dict[str, float]:
        return {"USDT": self._unified_usdt + self._unrealized_pnl}

    def get_coins_list(self) -> List[Dict[str, Any]]:
        """各账户币种余额（与交易所钱包接口同构），只列出有余额的账户"""
        coins = []
        if self._funding_usdt > 0:
            coins.append({
                "coin": "USDT",
                "equity": self._funding_usdt,
                "usdValue": self._funding_usdt,
                "accountType": ACCOUNT_FUND,
            })
        if self._unified_usdt > 0:
            # 权益只含 USDT 本身，浮动盈亏属于持仓
            coins.append({
                "coin": "USDT",
                "equity": self._unified_usdt,
                "usdValue": self._unified_usdt,
                "accountType": ACCOUNT_UNIFIED,
            })
        return coins

    def get_trading_stats(self) -> Dict[str, str]:
        return dict(TRADING_STATS)

    # ── 持仓 ──────────────────────────────────────────────

    def _notify_positions(self) -> None:
        self.positions_notifier.value = list(self._positions)

    def get_positions(self) -> List[Dict[str, Any]]:
        return list(self._positions)

    def add_position(self, position: Dict[str, Any]) -> None:
        self._positions.append(position)
        self._notify_positions()

    def remove_position(self, position_id: str) -> None:
        self._positions = [p for p in self._positions if p.get("id") != position_id]
        self._notify_positions()

    def update_position(self, position_id: str, position: Dict[str, Any]) -> bool:
        for index, existing in enumerate(self._positions):
            if existing.get("id") == position_id:
                self._positions[index] = position
                self._notify_positions()
                return True
        return False

    def clear_positions(self) -> None:
        self._positions = []
        self._notify_positions()

    def has_position_with_symbol(self, symbol: str) -> bool:
        return any(p.get("symbol") == symbol for p in self._positions)


# ── 模块级别单例 ──────────────────────────────────────────
_portfolio_service: Optional[MockPortfolioService] = None


def get_portfolio_service() -> MockPortfolioService:
    global _portfolio_service
    if _portfolio_service is None:
        _portfolio_service = MockPortfolioService()
    return _portfolio_service
