"""
K 线行情流路由
POST   /api/stream/subscribe   - 订阅 kline.{interval}.{symbol}（替换当前订阅）
DELETE /api/stream/subscribe   - 断开订阅
GET    /api/stream/status      - 连接状态
GET    /api/stream/latest      - 最新一根 K 线
WS     /api/stream/ws          - 向前端转发 K 线推送帧
"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field

from crypto_service.models.response import ApiResponse
from crypto_service.services.stream_service import get_stream_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stream", tags=["K线行情流"])


class SubscribeRequest(BaseModel):
    category: str = Field(default="spot", pattern="^(spot|linear)$")
    symbol: str = Field(min_length=1)
    interval: str = Field(default="15", min_length=1, description="1 / 5 / 15 / 60 / 240 / D ...")


@router.post("/subscribe", response_model=ApiResponse)
async def subscribe(body: SubscribeRequest):
    svc = get_stream_service()
    try:
        state = await svc.subscribe(body.category, body.symbol, body.interval)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"行情流连接失败: {exc}",
        )
    return ApiResponse.ok(data=state, message=f"已订阅 {state['topic']}")


@router.delete("/subscribe", response_model=ApiResponse)
async def unsubscribe():
    svc = get_stream_service()
    await svc.unsubscribe()
    return ApiResponse.ok(data=svc.status(), message="已断开行情流")


@router.get("/status", response_model=ApiResponse)
async def stream_status():
    return ApiResponse.ok(data=get_stream_service().status())


@router.get("/latest", response_model=ApiResponse)
async def latest_kline():
    candle = get_stream_service().latest()
    if candle is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="暂无 K 线数据")
    return ApiResponse.ok(data=candle)


async def _pump(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        frame = await queue.get()
        await websocket.send_json(frame)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws")
async def relay_klines(websocket: WebSocket):
    """把上游推送帧原样转发给前端；任一方向结束（前端断开或发送失败）即注销监听"""
    svc = get_stream_service()
    queue = svc.register_listener()
    try:
        await websocket.accept()
        tasks = {
            asyncio.create_task(_pump(websocket, queue)),
            asyncio.create_task(_wait_for_disconnect(websocket)),
        }
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning(f"K 线转发中断: {exc}")
        logger.debug("前端 K 线监听已断开")
    finally:
        svc.unregister_listener(queue)
