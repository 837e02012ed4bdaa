"""
图表生成层
为演示模式生成看起来合理的资产、盈亏与成交额曲线。
所有曲线共用同一套"周期波形"：按周期数把时间轴切成若干段，每段一个正弦起伏，
最后一个点固定落在波峰，保证图表以上涨收尾。
"""

import logging
import math
import random
import zlib
from typing import Dict, List, Optional

from crypto_service.models.chart import ChartPoint

logger = logging.getLogger(__name__)

DEFAULT_PERIOD = "7d"

PERIOD_DAYS: Dict[str, int] = {
    "7d": 7,
    "30d": 30,
    "60d": 60,
    "90d": 90,
    "180d": 180,
}

# 各周期的累计盈亏目标值（USDT）
TARGET_PNL: Dict[str, float] = {
    "7d": 32.94,
    "30d": 141.17,
    "60d": 282.33,
    "90d": 423.50,
    "180d": 847.0,
}

PERIOD_CYCLES: Dict[str, int] = {
    "7d": 1,
    "30d": 2,
    "60d": 2,
    "90d": 3,
    "180d": 4,
}
_DEFAULT_CYCLES = 4

# 波动幅度 = 基准值 × 比例
_PORTFOLIO_AMPLITUDE = {"7d": 0.05, "30d": 0.07, "60d": 0.08, "90d": 0.09}
_PORTFOLIO_AMPLITUDE_DEFAULT = 0.10
_PNL_AMPLITUDE = {"7d": 0.20, "30d": 0.22, "60d": 0.24, "90d": 0.26}
_PNL_AMPLITUDE_DEFAULT = 0.28

INITIAL_UNIFIED_BALANCE = 4427.0

_DAILY_PNL_SEED = 456
_ORDER_VALUE_SEED = 789


def get_days_for_period(period: str) -> int:
    return PERIOD_DAYS.get(period, PERIOD_DAYS[DEFAULT_PERIOD])


def get_target_pnl(period: str) -> float:
    return TARGET_PNL.get(period, 0.0)


def get_cycles_for_period(period: str) -> int:
    return PERIOD_CYCLES.get(period, _DEFAULT_CYCLES)


def _period_seed(period: str, offset: int = 0) -> int:
    # hash() 对字符串加盐，跨进程不稳定
    return zlib.crc32(period.encode("utf-8")) + offset


def cycle_wave(progress: float, num_cycles: int, is_last: bool = False) -> float:
    """
    周期波形取值

    Args:
        progress: 时间进度 0~1
        num_cycles: 周期数
        is_last: 是否为最后一个点（固定返回 1.0）
    """
    if is_last:
        return 1.0
    index = min(max(math.floor(progress * num_cycles), 0), num_cycles - 1)
    p = min(max(progress * num_cycles - index, 0.0), 1.0)

    if index == 0:
        # 先涨后小幅回落
        return math.sin(p * math.pi)
    if index == 1:
        return -math.sin(p * math.pi) * 0.6
    if index == 2 and num_cycles != 3:
        return -math.sin(p * math.pi) * 0.5
    # 收尾段只涨不跌
    return math.sin(p * math.pi * 0.5)


class ChartLayer:
    """模拟图表序列生成"""

    # ── 资产曲线 ──────────────────────────────────────────

    def portfolio_history(self, period: str, start_value: float) -> List[ChartPoint]:
        """从当前总资产出发的资产走势，带 ±2% 噪声，最低不低于起点的 75%"""
        days = get_days_for_period(period)
        rng = random.Random(_period_seed(period))
        num_cycles = get_cycles_for_period(period)
        amplitude = start_value * _PORTFOLIO_AMPLITUDE.get(period, _PORTFOLIO_AMPLITUDE_DEFAULT)

        points = []
        for i in range(days + 1):
            wave = cycle_wave(i / days, num_cycles, is_last=i == days)
            noise = rng.random() * 0.04 - 0.02
            trend = i * 0.15
            value = start_value + amplitude * wave + trend + start_value * noise
            if value < start_value * 0.75:
                value = start_value * 0.75 + rng.random() * 300
            points.append(ChartPoint(x=float(i), y=value))
        return points

    # ── 盈亏曲线 ──────────────────────────────────────────

    def _pnl_curve(self, period: str, seed_offset: int) -> List[float]:
        days = get_days_for_period(period)
        rng = random.Random(_period_seed(period, seed_offset))
        target = get_target_pnl(period)
        num_cycles = get_cycles_for_period(period)
        amplitude = target * _PNL_AMPLITUDE.get(period, _PNL_AMPLITUDE_DEFAULT)

        values = []
        for i in range(days + 1):
            progress = i / days
            wave = cycle_wave(progress, num_cycles, is_last=i == days)
            trend = target * progress
            noise = target * (rng.random() * 0.06 - 0.03) / days
            values.append(amplitude * wave + trend + noise)
        # 终点精确落在目标值
        values[-1] = target
        return values

    def pnl_history(self, period: str) -> List[ChartPoint]:
        """累计盈亏走势，终点等于该周期的目标盈亏"""
        values = self._pnl_curve(period, seed_offset=1000)
        return [ChartPoint(x=float(i), y=v) for i, v in enumerate(values)]

    def cumulative_daily_pnl_history(
        self, period: str, initial_value: float = INITIAL_UNIFIED_BALANCE
    ) -> List[ChartPoint]:
        """统一交易账户权益走势 = 初始余额 + 累计盈亏"""
        values = self._pnl_curve(period, seed_offset=2000)
        return [ChartPoint(x=float(i), y=initial_value + v) for i, v in enumerate(values)]

    def daily_pnl_history(self, period: str) -> List[ChartPoint]:
        """
        逐日盈亏（柱状图）

        每天在日均值的 40%~200% 间波动，15% 概率出现放大的波动（其中 30% 为亏损），
        并逐步向目标修正；各日之和等于目标盈亏（误差 ≤ 0.01）。
        """
        days = get_days_for_period(period)
        rng = random.Random(_DAILY_PNL_SEED)
        target = get_target_pnl(period)
        avg = target / days
        floor_value = avg * 0.3

        values: List[float] = []
        total = 0.0
        for i in range(days + 1):
            if i == days:
                remaining = target - total
                daily = min(max(remaining, floor_value), avg * 2.0)
                if daily != remaining and i > 0:
                    # 最后一天超出合理区间，把差额摊到前几天
                    spread = min(5, i)
                    adjustment = (remaining - daily) / spread
                    for j in range(len(values) - spread, len(values)):
                        values[j] += adjustment
                        total += adjustment
                    daily = target - total
            else:
                daily = avg * (0.4 + rng.random() * 1.6)
                if rng.random() < 0.15:
                    sign = -1.0 if rng.random() < 0.3 else 1.0
                    daily = avg * (1.5 + rng.random() * 2.5) * sign

                remaining = target - total
                remaining_days = days - i
                if remaining_days > 0 and abs(remaining) > 0.01:
                    correction = 0.15 + (i / days) * 0.25
                    daily += remaining / remaining_days * correction
                daily = max(daily, floor_value)

            total += daily
            values.append(daily)

        diff = target - sum(values)
        if abs(diff) > 0.01 and len(values) > 1:
            spread = min(3, len(values) - 1)
            adjustment = diff / spread
            for j in range(len(values) - spread - 1, len(values) - 1):
                values[j] += adjustment
            values[-1] = target - sum(values[:-1])

        return [ChartPoint(x=float(i), y=v) for i, v in enumerate(values)]

    # ── 成交额 ────────────────────────────────────────────

    def order_value_history(
        self,
        period: str,
        portfolio_size: float,
        is_futures: bool = False,
    ) -> Dict[str, List[ChartPoint]]:
        """
        每日成交额（总额 / 买入 / 卖出）

        现货日成交为资产规模的 1%~5%，合约为 0.5%~2%；买入占 50%~70%。
        """
        days = get_days_for_period(period)
        rng = random.Random(_ORDER_VALUE_SEED)
        low, high = (0.005, 0.02) if is_futures else (0.01, 0.05)

        total_series, purchase_series, sale_series = [], [], []
        for i in range(days + 1):
            total = portfolio_size * (low + rng.random() * (high - low))
            purchase = total * (0.5 + rng.random() * 0.2)
            x = float(i)
            total_series.append(ChartPoint(x=x, y=total))
            purchase_series.append(ChartPoint(x=x, y=purchase))
            sale_series.append(ChartPoint(x=x, y=total - purchase))

        return {
            "total": total_series,
            "purchase": purchase_series,
            "sale": sale_series,
        }


# ── 模块级别单例 ──────────────────────────────────────────
_charts: Optional[ChartLayer] = None


def get_chart_layer() -> ChartLayer:
    global _charts
    if _charts is None:
        _charts = ChartLayer()
    return _charts
