"""
促销活动相关数据模型
活动状态不存储，由时间字段与启用开关实时推导
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, validator
from enum import Enum

from promotions.models.discount import ensure_utc, utc_now


class EventType(str, Enum):
    """活动类型"""
    FLASH_SALE = "FLASH_SALE"  # 限时抢购
    SEASONAL = "SEASONAL"  # 季节促销
    CLEARANCE = "CLEARANCE"  # 清仓
    NEW_ARRIVAL = "NEW_ARRIVAL"  # 新品


class EventStatus(str, Enum):
    """活动状态（推导值）"""
    UPCOMING = "UPCOMING"  # 未开始
    ACTIVE = "ACTIVE"  # 进行中
    PAUSED = "PAUSED"  # 已暂停
    ENDED = "ENDED"  # 已结束


class ScheduleMode(str, Enum):
    """排期方式"""
    NOW = "now"  # 立即开始
    LATER = "later"  # 指定时间开始


class PromotionEvent(BaseModel):
    """促销活动"""

    event_id: str = Field(..., description="活动ID")
    title: str = Field(..., min_length=1, max_length=100, description="活动标题")
    description: Optional[str] = Field(None, max_length=500, description="活动描述")
    event_type: EventType = Field(default=EventType.FLASH_SALE, description="活动类型")
    shop_id: Optional[str] = Field(None, description="店铺ID")
    product_ids: List[str] = Field(default_factory=list, description="参与商品")
    starting_date: datetime = Field(..., description="开始时间")
    ending_date: datetime = Field(..., description="结束时间")
    auto_start: bool = Field(default=True, description="到点自动开始")
    auto_end: bool = Field(default=True, description="到点自动结束")
    is_active: bool = Field(default=True, description="手动启用开关")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @validator('starting_date')
    def validate_starting_date(cls, v):
        return ensure_utc(v)

    @validator('ending_date')
    def validate_ending_date(cls, v, values):
        """结束时间必须晚于开始时间"""
        v = ensure_utc(v)
        if 'starting_date' in values and v <= values['starting_date']:
            raise ValueError('结束时间必须晚于开始时间')
        return v


class EventCreate(BaseModel):
    """创建活动模型"""

    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    event_type: EventType = EventType.FLASH_SALE
    shop_id: Optional[str] = None
    product_ids: List[str] = Field(default_factory=list)
    schedule_mode: ScheduleMode = ScheduleMode.LATER
    starting_date: Optional[datetime] = None
    ending_date: datetime = Field(...)
    auto_start: bool = True
    auto_end: bool = True
    is_active: bool = True


class EventUpdate(BaseModel):
    """更新活动模型"""

    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    event_type: Optional[EventType] = None
    product_ids: Optional[List[str]] = None
    starting_date: Optional[datetime] = None
    ending_date: Optional[datetime] = None
    auto_start: Optional[bool] = None
    auto_end: Optional[bool] = None


class EventStatusView(BaseModel):
    """活动状态展示"""

    event_id: str
    status: EventStatus
    is_live: bool
    progress_percent: Optional[float] = None
    seconds_remaining: Optional[int] = None
    seconds_until_start: Optional[int] = None


class EventListStatus(str, Enum):
    """卖家端活动列表筛选"""
    ALL = "all"
    ACTIVE = "active"
    UPCOMING = "upcoming"
    EXPIRED = "expired"
