"""
优惠使用记录数据库模型
"""

from sqlalchemy import Column, String, Integer, Numeric, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from promotions.core.database import Base


class DiscountUsageRecordDB(Base):
    """优惠使用记录表，每个(订单, 规则)一行"""
    
    __tablename__ = "discount_usage_records"
    
    record_id = Column(String(50), primary_key=True, comment="记录ID")
    order_id = Column(String(50), nullable=False, index=True, comment="订单ID")
    rule_id = Column(String(50), nullable=False, index=True, comment="规则ID")
    customer_id = Column(String(50), index=True, comment="顾客ID")
    ip_address = Column(String(64), comment="请求IP")
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0, comment="折扣金额")
    status = Column(String(20), nullable=False, default="committed", index=True, comment="状态 committed/reversed")
    
    used_at = Column(DateTime(timezone=True), server_default=func.now(), comment="使用时间")
    reversed_at = Column(DateTime(timezone=True), comment="冲正时间")
    
    __table_args__ = (
        UniqueConstraint("order_id", "rule_id", name="uq_usage_order_rule"),
        {'comment': '优惠使用记录表'}
    )


class DiscountUsageCounterDB(Base):
    """使用次数计数表，按 (规则, 范围) 原子条件自增"""
    
    __tablename__ = "discount_usage_counters"
    
    rule_id = Column(String(50), primary_key=True, comment="规则ID")
    scope_key = Column(String(120), primary_key=True, comment="范围 total / customer:<id> / ip:<addr>")
    count = Column(Integer, nullable=False, default=0, comment="已使用次数")
    
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), comment="更新时间")
    
    __table_args__ = (
        {'comment': '优惠使用计数表'}
    )
