"""
促销活动数据库模型
"""

from sqlalchemy import Column, String, Text, Boolean, DateTime, JSON
from sqlalchemy.sql import func
from promotions.core.database import Base


class PromotionEventDB(Base):
    """促销活动表，状态不落库"""
    
    __tablename__ = "promotion_events"
    
    event_id = Column(String(50), primary_key=True, comment="活动ID")
    title = Column(String(100), nullable=False, comment="活动标题")
    description = Column(Text, comment="活动描述")
    event_type = Column(String(20), nullable=False, comment="活动类型")
    shop_id = Column(String(50), index=True, comment="店铺ID")
    product_ids = Column(JSON, nullable=False, comment="参与商品ID列表")
    
    # 排期
    starting_date = Column(DateTime(timezone=True), nullable=False, index=True, comment="开始时间")
    ending_date = Column(DateTime(timezone=True), nullable=False, index=True, comment="结束时间")
    auto_start = Column(Boolean, default=True, nullable=False, comment="自动开始")
    auto_end = Column(Boolean, default=True, nullable=False, comment="自动结束")
    is_active = Column(Boolean, default=True, nullable=False, comment="启用开关")
    
    # 时间戳
    created_at = Column(DateTime(timezone=True), server_default=func.now(), comment="创建时间")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), comment="更新时间")
    
    __table_args__ = (
        {'comment': '促销活动表'}
    )
