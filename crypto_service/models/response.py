"""接口响应封装：与移动端约定 {success, data, message, error} 结构"""

from typing import Any, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ApiResponse(BaseModel):
    success: bool = True
    data: Optional[Any] = None
    message: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "success") -> "ApiResponse":
        return cls(data=data, message=message)

    @classmethod
    def fail(cls, error: str, message: str = "failed") -> "ApiResponse":
        return cls(success=False, error=error, message=message)

    def as_json(self, status_code: int = 200) -> JSONResponse:
        """用于异常处理器等直接返回 Response 的场景"""
        return JSONResponse(status_code=status_code, content=self.model_dump())
