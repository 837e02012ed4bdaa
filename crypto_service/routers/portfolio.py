"""
模拟资产路由
GET    /api/portfolio/summary               - 余额汇总与今日盈亏
GET    /api/portfolio/prices                - 缓存价格（过期自动刷新）
POST   /api/portfolio/prices/refresh        - 强制刷新价格
POST   /api/portfolio/prices/sync           - 用行情列表同步价格
GET    /api/portfolio/prices/{coin}         - 单币种价格
PUT    /api/portfolio/prices/{coin}         - 手动设置价格
PUT    /api/portfolio/entry-prices/{coin}   - 设置开仓价
GET    /api/portfolio/coins                 - 各账户币种余额
GET    /api/portfolio/distribution          - 资产分布
GET    /api/portfolio/stats                 - 交易统计
GET    /api/portfolio/charts/{kind}         - 图表序列
GET    /api/portfolio/order-values          - 成交额序列
POST   /api/portfolio/transfer              - 账户间划转
POST   /api/portfolio/deposit               - 资金账户充值
POST   /api/portfolio/pnl/realize           - 计入已实现盈亏
PUT    /api/portfolio/pnl/unrealized        - 更新浮动盈亏
POST   /api/portfolio/balances/reset        - 余额恢复初始值
GET    /api/portfolio/positions             - 持仓列表
POST   /api/portfolio/positions             - 新增持仓
PUT    /api/portfolio/positions/{id}        - 更新持仓
DELETE /api/portfolio/positions/{id}        - 删除持仓
DELETE /api/portfolio/positions             - 清空持仓
"""

from typing import Any, Dict, List, Union

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from crypto_service.layers.charts import DEFAULT_PERIOD
from crypto_service.models.response import ApiResponse
from crypto_service.services.portfolio_service import TransferError, get_portfolio_service

router = APIRouter(prefix="/api/portfolio", tags=["模拟资产"])


# ── 请求模型 ──────────────────────────────────────────────

class PriceUpdate(BaseModel):
    price: float


class PriceListItem(BaseModel):
    symbol: str = ""
    pair: str = ""
    price: float = 0.0


class PriceSyncRequest(BaseModel):
    items: List[PriceListItem]


class TransferRequest(BaseModel):
    coin: str = "USDT"
    amount: Union[str, float]
    from_account_type: str = Field(description="FUND / UNIFIED")
    to_account_type: str = Field(description="FUND / UNIFIED")


class AmountRequest(BaseModel):
    amount: float


class PnlRequest(BaseModel):
    pnl: float


def _unknown_coin(coin: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"不支持的币种: {coin}")


# ── 余额与价格 ────────────────────────────────────────────

@router.get("/summary", response_model=ApiResponse)
async def get_summary():
    """余额汇总、日初余额与今日盈亏"""
    svc = get_portfolio_service()
    summary = svc.get_balance_summary()
    summary["pnlToday"] = await svc.get_pnl_today()
    summary["balanceAtStartOfDay"] = await svc.get_balance_at_start_of_day()
    summary["useMockData"] = svc.use_mock_data
    return ApiResponse.ok(data=summary)


def _prices_payload() -> Dict[str, Any]:
    svc = get_portfolio_service()
    last_update = svc.last_price_update
    return {
        "prices": svc.prices,
        "entryPrices": svc.entry_prices,
        "lastUpdate": last_update.isoformat() if last_update else None,
    }


@router.get("/prices", response_model=ApiResponse)
async def get_prices(force: bool = Query(default=False)):
    """所有跟踪币种的价格；缓存过期时先刷新"""
    svc = get_portfolio_service()
    if force:
        await svc.refresh_prices()
    else:
        await svc.get_price("BTC")
    return ApiResponse.ok(data=_prices_payload())


@router.post("/prices/refresh", response_model=ApiResponse)
async def refresh_prices():
    await get_portfolio_service().refresh_prices()
    return ApiResponse.ok(data=_prices_payload(), message="价格已刷新")


@router.post("/prices/sync", response_model=ApiResponse)
async def sync_prices(body: PriceSyncRequest):
    """用前端行情列表同步价格"""
    get_portfolio_service().update_prices_from_list(
        [item.model_dump() for item in body.items]
    )
    return ApiResponse.ok(data=_prices_payload())


@router.get("/prices/{coin}", response_model=ApiResponse)
async def get_coin_price(coin: str, force: bool = Query(default=False)):
    svc = get_portfolio_service()
    try:
        price = await svc.get_price(coin, force=force)
    except KeyError:
        raise _unknown_coin(coin)
    return ApiResponse.ok(data={"coin": coin.upper(), "price": price})


@router.put("/prices/{coin}", response_model=ApiResponse)
async def set_coin_price(coin: str, body: PriceUpdate):
    svc = get_portfolio_service()
    try:
        svc.set_price(coin, body.price)
        price = svc.cached_price(coin)
    except KeyError:
        raise _unknown_coin(coin)
    return ApiResponse.ok(data={"coin": coin.upper(), "price": price})


@router.put("/entry-prices/{coin}", response_model=ApiResponse)
async def set_entry_price(coin: str, body: PriceUpdate):
    svc = get_portfolio_service()
    try:
        svc.set_entry_price(coin, body.price)
        price = svc.entry_price(coin)
    except KeyError:
        raise _unknown_coin(coin)
    return ApiResponse.ok(data={"coin": coin.upper(), "entryPrice": price})


@router.get("/coins", response_model=ApiResponse)
async def get_coins():
    coins = get_portfolio_service().get_coins_list()
    return ApiResponse.ok(data={"count": len(coins), "coins": coins})


@router.get("/distribution", response_model=ApiResponse)
async def get_distribution():
    return ApiResponse.ok(data=get_portfolio_service().get_asset_distribution())


@router.get("/stats", response_model=ApiResponse)
async def get_stats():
    return ApiResponse.ok(data=get_portfolio_service().get_trading_stats())


# ── 图表 ──────────────────────────────────────────────────

_CHARTS = {
    "portfolio": "get_portfolio_history",
    "pnl": "get_pnl_history",
    "daily-pnl": "get_daily_pnl_history",
    "cumulative-pnl": "get_cumulative_daily_pnl_history",
}


@router.get("/charts/{kind}", response_model=ApiResponse)
async def get_chart(
    kind: str,
    period: str = Query(default=DEFAULT_PERIOD, description="7d / 30d / 60d / 90d / 180d"),
):
    """图表序列：portfolio / pnl / daily-pnl / cumulative-pnl"""
    method = _CHARTS.get(kind)
    if method is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"未知图表类型: {kind}")
    svc = get_portfolio_service()
    points = getattr(svc, method)(period)
    return ApiResponse.ok(
        data={
            "kind": kind,
            "period": period,
            "days": svc.get_days_for_period(period),
            "points": [p.model_dump() for p in points],
        },
    )


@router.get("/order-values", response_model=ApiResponse)
async def get_order_values(
    period: str = Query(default=DEFAULT_PERIOD),
    is_futures: bool = Query(default=False),
):
    series = get_portfolio_service().get_order_value_history(period, is_futures=is_futures)
    return ApiResponse.ok(
        data={
            "period": period,
            "isFutures": is_futures,
            **{name: [p.model_dump() for p in points] for name, points in series.items()},
        },
    )


# ── 资金变动 ──────────────────────────────────────────────

@router.post("/transfer", response_model=ApiResponse)
async def transfer(body: TransferRequest):
    svc = get_portfolio_service()
    try:
        result = await svc.transfer_between_accounts(
            coin=body.coin,
            amount=body.amount,
            from_account_type=body.from_account_type,
            to_account_type=body.to_account_type,
        )
    except TransferError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return ApiResponse.ok(data={**result, "balances": svc.get_balance_summary()})


@router.post("/deposit", response_model=ApiResponse)
async def deposit(body: AmountRequest):
    if body.amount <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="充值金额必须大于零")
    svc = get_portfolio_service()
    await svc.add_funding_balance(body.amount)
    return ApiResponse.ok(data=svc.get_balance_summary())


@router.post("/pnl/realize", response_model=ApiResponse)
async def realize_pnl(body: PnlRequest):
    svc = get_portfolio_service()
    svc.realize_pnl(body.pnl)
    return ApiResponse.ok(data=svc.get_balance_summary())


@router.put("/pnl/unrealized", response_model=ApiResponse)
async def set_unrealized_pnl(body: PnlRequest):
    svc = get_portfolio_service()
    svc.set_unrealized_pnl(body.pnl)
    return ApiResponse.ok(data=svc.get_balance_summary())


@router.post("/balances/reset", response_model=ApiResponse)
async def reset_balances():
    svc = get_portfolio_service()
    svc.reset_balances()
    return ApiResponse.ok(data=svc.get_balance_summary(), message="余额已重置")


# ── 持仓 ──────────────────────────────────────────────────

@router.get("/positions", response_model=ApiResponse)
async def list_positions():
    positions = get_portfolio_service().get_positions()
    return ApiResponse.ok(data={"count": len(positions), "positions": positions})


@router.post("/positions", response_model=ApiResponse)
async def add_position(position: Dict[str, Any]):
    if not position.get("id"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="持仓缺少 id")
    get_portfolio_service().add_position(position)
    return ApiResponse.ok(data=position)


@router.put("/positions/{position_id}", response_model=ApiResponse)
async def update_position(position_id: str, position: Dict[str, Any]):
    if not get_portfolio_service().update_position(position_id, position):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"持仓不存在: {position_id}")
    return ApiResponse.ok(data=position)


@router.delete("/positions/{position_id}", response_model=ApiResponse)
async def remove_position(position_id: str):
    get_portfolio_service().remove_position(position_id)
    return ApiResponse.ok(message=f"持仓已删除: {position_id}")


@router.delete("/positions", response_model=ApiResponse)
async def clear_positions():
    get_portfolio_service().clear_positions()
    return ApiResponse.ok(message="持仓已清空")
