"""图表数据模型"""

from pydantic import BaseModel


class ChartPoint(BaseModel):
    """折线图上的一个点，x 为自周期起点的天数序号"""
    x: float
    y: float
