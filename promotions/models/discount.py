"""
优惠规则相关数据模型
优惠码、活动折扣、商品折扣统一用DiscountRule表示
"""

import re
from decimal import Decimal
from datetime import datetime, timezone
from typing import List, Optional, Set
from pydantic import BaseModel, Field, validator, model_validator
from enum import Enum

from promotions.models.order import OrderLine

DISCOUNT_CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,20}$")


def utc_now() -> datetime:
    """当前UTC时间"""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """无时区的时间按UTC处理"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_code(code: str) -> str:
    """优惠码统一大写、去空白"""
    return code.strip().upper()


class RuleKind(str, Enum):
    """规则来源"""
    CODE = "CODE"  # 顾客输入的优惠码
    EVENT = "EVENT"  # 活动全场折扣
    PRODUCT = "PRODUCT"  # 商品折扣


class DiscountType(str, Enum):
    """折扣计算类型"""
    PERCENTAGE = "PERCENTAGE"  # 百分比折扣
    FIXED_AMOUNT = "FIXED_AMOUNT"  # 固定金额
    FREE_SHIPPING = "FREE_SHIPPING"  # 免运费
    SPECIAL_PRICE = "SPECIAL_PRICE"  # 特价
    BUY_X_GET_Y = "BUY_X_GET_Y"  # 买X送Y
    TIERED = "TIERED"  # 阶梯折扣


# 同优先级时的种类排序：越具体越优先
KIND_RANK = {
    RuleKind.PRODUCT: 3,
    RuleKind.EVENT: 2,
    RuleKind.CODE: 1,
}


class DiscountTier(BaseModel):
    """阶梯折扣档位，按数量或金额达标"""

    min_quantity: Optional[int] = Field(None, ge=1, description="最低数量")
    min_amount: Optional[Decimal] = Field(None, ge=0, description="最低金额")
    percent: Decimal = Field(..., ge=0, le=100, description="折扣百分比")

    @model_validator(mode="after")
    def validate_threshold(self):
        """至少设置一个门槛"""
        if self.min_quantity is None and self.min_amount is None:
            raise ValueError('阶梯必须设置最低数量或最低金额')
        return self

    def is_met(self, quantity: int, amount: Decimal) -> bool:
        """检查是否达到档位门槛"""
        if self.min_quantity is not None and quantity < self.min_quantity:
            return False
        if self.min_amount is not None and amount < self.min_amount:
            return False
        return True


class Applicability(BaseModel):
    """适用范围：全部，或指定商品/类目，可排除商品"""

    applies_to_all: bool = Field(default=True, description="是否适用全部商品")
    include_products: List[str] = Field(default_factory=list, description="适用商品ID")
    include_categories: List[str] = Field(default_factory=list, description="适用类目ID")
    exclude_products: List[str] = Field(default_factory=list, description="排除商品ID")

    @property
    def is_restricted(self) -> bool:
        return not self.applies_to_all

    def matches(self, line: OrderLine) -> bool:
        """检查订单行是否在适用范围内"""
        if line.product_id in self.exclude_products:
            return False
        if self.applies_to_all:
            return True
        if line.product_id in self.include_products:
            return True
        return line.category_id is not None and line.category_id in self.include_categories


class CustomerRestriction(BaseModel):
    """顾客限制"""

    first_time_only: bool = Field(default=False, description="仅限首单顾客")
    email_domains: Optional[Set[str]] = Field(None, description="允许的邮箱域名")

    @validator('email_domains')
    def normalize_domains(cls, v):
        if v is None:
            return v
        return {domain.strip().lower().lstrip("@") for domain in v if domain.strip()}


class DiscountRule(BaseModel):
    """单条可计算的优惠规则"""

    rule_id: str = Field(..., description="规则ID")
    kind: RuleKind = Field(..., description="规则来源")
    name: str = Field(..., min_length=1, max_length=100, description="展示名称")
    description: Optional[str] = Field(None, max_length=500, description="描述")
    code: Optional[str] = Field(None, description="优惠码（CODE类型必填）")
    event_id: Optional[str] = Field(None, description="所属活动ID（EVENT类型必填）")
    shop_id: Optional[str] = Field(None, description="店铺ID")

    discount_type: DiscountType = Field(..., description="折扣计算类型")
    value: Decimal = Field(..., ge=0, description="折扣值，含义取决于折扣类型")
    min_quantity: Optional[int] = Field(None, ge=1, description="买X送Y中的X")
    tiers: List[DiscountTier] = Field(default_factory=list, description="阶梯档位")

    minimum_order_amount: Optional[Decimal] = Field(None, ge=0, description="最低订单金额")
    maximum_discount_amount: Optional[Decimal] = Field(None, ge=0, description="最高折扣金额（仅百分比）")

    valid_from: datetime = Field(default_factory=utc_now, description="生效时间")
    valid_until: Optional[datetime] = Field(None, description="失效时间，空表示长期有效")

    usage_limit_total: Optional[int] = Field(None, ge=1, description="总使用次数限制")
    usage_limit_per_user: Optional[int] = Field(None, ge=1, description="单用户使用次数限制")

    applicability: Applicability = Field(default_factory=Applicability)
    customer_restriction: CustomerRestriction = Field(default_factory=CustomerRestriction)

    priority: int = Field(default=0, description="优先级，越大越先应用")
    stackable: bool = Field(default=False, description="是否可与其他规则叠加")
    is_active: bool = Field(default=True, description="手动启用开关")

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @validator('code')
    def validate_code(cls, v):
        """优惠码格式：3-20位大写字母或数字"""
        if v is None:
            return v
        v = normalize_code(v)
        if not DISCOUNT_CODE_PATTERN.match(v):
            raise ValueError('优惠码必须为3-20位大写字母或数字')
        return v

    @validator('value')
    def validate_value(cls, v, values):
        """验证折扣值"""
        discount_type = values.get('discount_type')
        if discount_type == DiscountType.PERCENTAGE and v > Decimal('100'):
            raise ValueError('百分比折扣不能超过100')
        if discount_type == DiscountType.FIXED_AMOUNT and v <= 0:
            raise ValueError('固定金额折扣值必须大于0')
        if discount_type == DiscountType.BUY_X_GET_Y and (v < 1 or v != v.to_integral_value()):
            raise ValueError('赠送数量必须为正整数')
        if discount_type == DiscountType.FREE_SHIPPING:
            return Decimal('0')
        return v

    @validator('maximum_discount_amount')
    def validate_max_discount(cls, v, values):
        """最高折扣金额只对百分比折扣有意义"""
        if v is not None and values.get('discount_type') != DiscountType.PERCENTAGE:
            raise ValueError('最高折扣金额仅适用于百分比折扣')
        return v

    @validator('valid_from')
    def validate_valid_from(cls, v):
        return ensure_utc(v)

    @validator('valid_until')
    def validate_validity_period(cls, v, values):
        """验证有效期"""
        v = ensure_utc(v)
        if v is not None and 'valid_from' in values and v <= values['valid_from']:
            raise ValueError('结束时间必须晚于开始时间')
        return v

    @model_validator(mode="after")
    def validate_kind_requirements(self):
        """按来源和类型检查必填项"""
        if self.kind == RuleKind.CODE and not self.code:
            raise ValueError('优惠码规则必须设置优惠码')
        if self.kind == RuleKind.EVENT and not self.event_id:
            raise ValueError('活动折扣必须关联活动')
        if self.discount_type == DiscountType.BUY_X_GET_Y and self.min_quantity is None:
            raise ValueError('买X送Y必须设置购买数量')
        if self.discount_type == DiscountType.TIERED and not self.tiers:
            raise ValueError('阶梯折扣必须至少设置一个档位')
        return self

    def applicable_lines(self, lines: List[OrderLine]) -> List[OrderLine]:
        """筛选适用范围内的订单行"""
        return [line for line in lines if self.applicability.matches(line)]

    def is_within_window(self, now: datetime) -> bool:
        """检查是否处于有效期内"""
        now = ensure_utc(now)
        if now < self.valid_from:
            return False
        return self.valid_until is None or now <= self.valid_until


class DiscountRuleCreate(BaseModel):
    """创建优惠规则模型（卖家端表单）"""

    kind: RuleKind = Field(...)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    code: Optional[str] = None
    event_id: Optional[str] = None
    shop_id: Optional[str] = None
    discount_type: DiscountType = Field(...)
    value: Decimal = Field(..., ge=0)
    min_quantity: Optional[int] = Field(None, ge=1)
    tiers: List[DiscountTier] = Field(default_factory=list)
    minimum_order_amount: Optional[Decimal] = Field(None, ge=0)
    maximum_discount_amount: Optional[Decimal] = Field(None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    usage_limit_total: Optional[int] = Field(None, ge=1)
    usage_limit_per_user: Optional[int] = Field(None, ge=1)
    applicability: Applicability = Field(default_factory=Applicability)
    customer_restriction: CustomerRestriction = Field(default_factory=CustomerRestriction)
    priority: int = 0
    stackable: bool = False
    is_active: bool = True


class DiscountRuleUpdate(BaseModel):
    """更新优惠规则模型"""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    code: Optional[str] = None
    value: Optional[Decimal] = Field(None, ge=0)
    min_quantity: Optional[int] = Field(None, ge=1)
    tiers: Optional[List[DiscountTier]] = None
    minimum_order_amount: Optional[Decimal] = Field(None, ge=0)
    maximum_discount_amount: Optional[Decimal] = Field(None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    usage_limit_total: Optional[int] = Field(None, ge=1)
    usage_limit_per_user: Optional[int] = Field(None, ge=1)
    applicability: Optional[Applicability] = None
    customer_restriction: Optional[CustomerRestriction] = None
    priority: Optional[int] = None
    stackable: Optional[bool] = None
    is_active: Optional[bool] = None


class RuleListStatus(str, Enum):
    """卖家端列表筛选状态"""
    ALL = "all"
    ACTIVE = "active"
    EXPIRED = "expired"
    INACTIVE = "inactive"
