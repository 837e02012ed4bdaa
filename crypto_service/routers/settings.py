"""
偏好设置路由
GET    /api/settings/mock-data          - 是否使用模拟数据
PUT    /api/settings/mock-data          - 切换模拟 / 真实数据
DELETE /api/settings/mock-data          - 删除已保存的开关，恢复默认
DELETE /api/settings/start-of-day       - 重置日初余额
"""

from fastapi import APIRouter
from pydantic import BaseModel

from crypto_service.models.response import ApiResponse
from crypto_service.services.portfolio_service import get_portfolio_service

router = APIRouter(prefix="/api/settings", tags=["偏好设置"])


class MockDataRequest(BaseModel):
    use_mock_data: bool


@router.get("/mock-data", response_model=ApiResponse)
async def get_mock_data():
    return ApiResponse.ok(data={"useMockData": get_portfolio_service().use_mock_data})


@router.put("/mock-data", response_model=ApiResponse)
async def set_mock_data(body: MockDataRequest):
    svc = get_portfolio_service()
    await svc.set_use_mock_data(body.use_mock_data)
    return ApiResponse.ok(data={"useMockData": svc.use_mock_data})


@router.delete("/mock-data", response_model=ApiResponse)
async def reset_mock_data():
    svc = get_portfolio_service()
    await svc.reset()
    return ApiResponse.ok(data={"useMockData": svc.use_mock_data}, message="已恢复默认设置")


@router.delete("/start-of-day", response_model=ApiResponse)
async def reset_start_of_day():
    svc = get_portfolio_service()
    await svc.reset_start_of_day_balance()
    return ApiResponse.ok(
        data={"balanceAtStartOfDay": await svc.get_balance_at_start_of_day()},
        message="日初余额已重置",
    )
