"""
Crypto Tracker 行情与模拟资产服务
为移动端加密货币追踪应用提供后端接口

组成：
  行情流   (Market Stream) → 订阅 Bybit 公共 WebSocket 的单一 K 线频道
  模拟资产 (Mock Portfolio) → 生成演示用的账户余额、盈亏曲线与图表数据
"""

__version__ = "1.0.0"
