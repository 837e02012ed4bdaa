"""健康检查路由"""

import time

from fastapi import APIRouter

from crypto_service import __version__
from crypto_service import db
from crypto_service.services.stream_service import get_stream_service

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health():
    """服务健康检查（含存储后端与行情流状态）"""
    db_health = await db.check_health()
    stream = get_stream_service().status()
    return {
        "success": True,
        "data": {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "Crypto Tracker Service",
            "storage": db_health,
            "stream": {
                "connected": stream["connected"],
                "topic": stream["topic"],
            },
        },
        "message": "服务运行正常",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes 存活检查"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz():
    """Kubernetes 就绪检查"""
    return {"ready": True}
