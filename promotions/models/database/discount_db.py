"""
优惠规则数据库模型
"""

from sqlalchemy import Column, String, Integer, Numeric, Text, Boolean, DateTime, JSON
from sqlalchemy.sql import func
from promotions.core.database import Base


class DiscountRuleDB(Base):
    """优惠规则表（优惠码/活动折扣/商品折扣）"""
    
    __tablename__ = "discount_rules"
    
    # 主键和基本信息
    rule_id = Column(String(50), primary_key=True, comment="规则ID")
    kind = Column(String(20), nullable=False, index=True, comment="规则来源")
    name = Column(String(100), nullable=False, comment="展示名称")
    description = Column(Text, comment="描述")
    code = Column(String(20), unique=True, index=True, comment="优惠码")
    event_id = Column(String(50), index=True, comment="所属活动ID")
    shop_id = Column(String(50), index=True, comment="店铺ID")
    
    # 折扣信息
    discount_type = Column(String(20), nullable=False, comment="折扣计算类型")
    value = Column(Numeric(12, 2), nullable=False, comment="折扣值")
    min_quantity = Column(Integer, comment="买X送Y中的X")
    tiers = Column(JSON, comment="阶梯档位")
    minimum_order_amount = Column(Numeric(12, 2), comment="最低订单金额")
    maximum_discount_amount = Column(Numeric(12, 2), comment="最高折扣金额")
    
    # 有效期
    valid_from = Column(DateTime(timezone=True), nullable=False, index=True, comment="生效时间")
    valid_until = Column(DateTime(timezone=True), index=True, comment="失效时间")
    
    # 使用限制
    usage_limit_total = Column(Integer, comment="总使用次数限制")
    usage_limit_per_user = Column(Integer, comment="单用户使用次数限制")
    
    # 适用范围与顾客限制
    applicability = Column(JSON, nullable=False, comment="适用范围")
    customer_restriction = Column(JSON, nullable=False, comment="顾客限制")
    
    # 冲突处理
    priority = Column(Integer, default=0, nullable=False, comment="优先级")
    stackable = Column(Boolean, default=False, nullable=False, comment="是否可叠加")
    is_active = Column(Boolean, default=True, nullable=False, index=True, comment="启用开关")
    
    # 时间戳
    created_at = Column(DateTime(timezone=True), server_default=func.now(), comment="创建时间")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), comment="更新时间")
    
    __table_args__ = (
        {'comment': '优惠规则表'}
    )
