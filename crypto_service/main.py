"""
Crypto Tracker 行情与模拟资产服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn crypto_service.main:app --host 0.0.0.0 --port 8002
    python -m crypto_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

from crypto_service import __version__
from crypto_service import db
from crypto_service.config import settings
from crypto_service.models.response import ApiResponse
from crypto_service.routers import health, portfolio, settings as settings_router, stream
from crypto_service.services.portfolio_service import get_portfolio_service
from crypto_service.services.stream_service import get_stream_service

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 Crypto Tracker Service v{__version__} 启动中")
    logger.info(f"   Spot WS   : {settings.BYBIT_WS_SPOT_URL}")
    logger.info(f"   Linear WS : {settings.BYBIT_WS_LINEAR_URL}")
    logger.info(f"   REST      : {settings.BYBIT_REST_URL}")
    logger.info("=" * 60)

    # 存储后端失败不阻断启动，偏好设置降级为文件
    redis_ok = await db.init_redis()
    mongo_ok = await db.init_mongodb()
    if not (redis_ok or mongo_ok):
        logger.warning(f"⚠️ Redis / MongoDB 均不可用，偏好设置保存到 {settings.PREFS_DIR}")

    portfolio_svc = get_portfolio_service()
    await portfolio_svc.init()
    logger.info(f"模拟数据开关: {portfolio_svc.use_mock_data}")

    yield

    logger.info("🔄 服务正在关闭...")
    await get_stream_service().unsubscribe()
    await db.close_connections()
    logger.info("✅ 服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="Crypto Tracker 行情与模拟资产服务",
    description=(
        "为移动端加密货币追踪应用提供：\n"
        "- 📡 Bybit 公共 WebSocket K 线订阅（单一主题，断线不重连）\n"
        "- 💰 模拟账户余额、划转、充值、今日盈亏\n"
        "- 📈 演示用资产 / 盈亏 / 成交额图表序列\n"
        "- ⚙️ 模拟数据开关等偏好设置（Redis → MongoDB → 文件）"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 全局异常处理 ──────────────────────────────────────────
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return ApiResponse.fail(error=str(exc.detail), message="请求失败").as_json(exc.status_code)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return ApiResponse.fail(error="内部服务错误", message=str(exc)).as_json(500)


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(portfolio.router)
app.include_router(settings_router.router)
app.include_router(stream.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Crypto Tracker Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "crypto_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
