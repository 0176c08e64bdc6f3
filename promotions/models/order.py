"""
订单上下文与优惠计算结果模型
OrderContext每次计算时由调用方构建，核心逻辑只读不写
"""

from decimal import Decimal
from datetime import datetime
from typing import List, Optional, Dict
from pydantic import BaseModel, Field, validator, model_validator
from enum import Enum


class ReasonCode(str, Enum):
    """不适用/被丢弃原因码"""
    CODE_NOT_FOUND = "CODE_NOT_FOUND"  # 优惠码不存在
    RULE_INACTIVE = "RULE_INACTIVE"  # 已停用
    NOT_STARTED = "NOT_STARTED"  # 尚未生效
    EXPIRED = "EXPIRED"  # 已过期
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"  # 关联活动不存在
    EVENT_NOT_ACTIVE = "EVENT_NOT_ACTIVE"  # 活动未进行中
    MINIMUM_NOT_MET = "MINIMUM_NOT_MET"  # 未达最低订单金额
    NOT_APPLICABLE = "NOT_APPLICABLE"  # 购物车中无适用商品
    FIRST_TIME_ONLY = "FIRST_TIME_ONLY"  # 仅限首单
    EMAIL_DOMAIN_NOT_ALLOWED = "EMAIL_DOMAIN_NOT_ALLOWED"  # 邮箱域名不符
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"  # 总次数已用完
    USER_USAGE_LIMIT_REACHED = "USER_USAGE_LIMIT_REACHED"  # 个人次数已用完
    RATE_LIMITED = "RATE_LIMITED"  # 校验过于频繁
    ONE_CODE_PER_ORDER = "ONE_CODE_PER_ORDER"  # 每单仅可使用一个优惠码
    NON_STACKABLE_CONFLICT = "NON_STACKABLE_CONFLICT"  # 与已应用的不可叠加规则冲突


REASON_MESSAGES: Dict[ReasonCode, str] = {
    ReasonCode.CODE_NOT_FOUND: "优惠码不存在",
    ReasonCode.RULE_INACTIVE: "优惠已停用",
    ReasonCode.NOT_STARTED: "优惠尚未开始使用",
    ReasonCode.EXPIRED: "优惠已过期",
    ReasonCode.EVENT_NOT_FOUND: "关联活动不存在",
    ReasonCode.EVENT_NOT_ACTIVE: "活动未在进行中",
    ReasonCode.MINIMUM_NOT_MET: "订单金额不满足最低要求",
    ReasonCode.NOT_APPLICABLE: "购物车中没有适用的商品",
    ReasonCode.FIRST_TIME_ONLY: "仅限首次下单的顾客使用",
    ReasonCode.EMAIL_DOMAIN_NOT_ALLOWED: "您的邮箱不在可用范围内",
    ReasonCode.USAGE_LIMIT_REACHED: "优惠使用次数已达上限",
    ReasonCode.USER_USAGE_LIMIT_REACHED: "您已达到该优惠的使用上限",
    ReasonCode.RATE_LIMITED: "尝试次数过多，请稍后再试",
    ReasonCode.ONE_CODE_PER_ORDER: "每个订单只能使用一个优惠码",
    ReasonCode.NON_STACKABLE_CONFLICT: "与其他不可叠加的优惠冲突",
}


class OrderLine(BaseModel):
    """购物车行"""

    line_id: str = Field(..., description="行ID")
    product_id: str = Field(..., description="商品ID")
    category_id: Optional[str] = Field(None, description="类目ID")
    quantity: int = Field(..., ge=1, description="数量")
    unit_price: Decimal = Field(..., ge=0, description="单价")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderContext(BaseModel):
    """单次计算的订单上下文"""

    lines: List[OrderLine] = Field(default_factory=list, description="购物车行")
    subtotal: Optional[Decimal] = Field(None, ge=0, description="折前小计，缺省按行汇总")
    customer_id: Optional[str] = Field(None, description="顾客ID")
    customer_email: Optional[str] = Field(None, description="顾客邮箱")
    is_first_time_customer: bool = Field(default=False, description="是否没有已完成订单")
    ip_address: Optional[str] = Field(None, description="请求IP")
    candidate_codes: List[str] = Field(default_factory=list, description="顾客提交的优惠码")
    shipping_cost: Optional[Decimal] = Field(None, ge=0, description="运费，未知为空")

    @validator('candidate_codes')
    def normalize_codes(cls, v):
        seen = []
        for code in v:
            code = code.strip().upper()
            if code and code not in seen:
                seen.append(code)
        return seen

    @validator('lines')
    def validate_unique_lines(cls, v):
        line_ids = [line.line_id for line in v]
        if len(line_ids) != len(set(line_ids)):
            raise ValueError('订单行ID不能重复')
        return v

    @model_validator(mode="after")
    def fill_subtotal(self):
        """未提供小计时按行汇总"""
        if self.subtotal is None:
            self.subtotal = sum((line.line_total for line in self.lines), Decimal("0"))
        return self

    @property
    def email_domain(self) -> Optional[str]:
        if not self.customer_email or "@" not in self.customer_email:
            return None
        return self.customer_email.rsplit("@", 1)[1].strip().lower()


class EligibilityResult(BaseModel):
    """资格检查结果"""

    rule_id: Optional[str] = Field(None, description="规则ID，优惠码不存在时为空")
    code: Optional[str] = None
    eligible: bool
    reason_codes: List[ReasonCode] = Field(default_factory=list)

    @property
    def messages(self) -> List[str]:
        return [REASON_MESSAGES[code] for code in self.reason_codes]


class AppliedRule(BaseModel):
    """已应用的规则及其折扣"""

    rule_id: str
    kind: str
    discount_type: str
    name: Optional[str] = None
    amount: Decimal = Field(..., ge=0, description="商品折扣金额")
    shipping_amount: Decimal = Field(default=Decimal("0"), ge=0, description="运费折扣金额")
    line_discounts: Dict[str, Decimal] = Field(default_factory=dict)


class DroppedRule(BaseModel):
    """符合资格但因冲突被丢弃的规则"""

    rule_id: str
    reason: ReasonCode
    blocking_rule_id: Optional[str] = None

    @property
    def message(self) -> str:
        return REASON_MESSAGES[self.reason]


class ResolutionResult(BaseModel):
    """冲突处理后的最终优惠"""

    applied_rules: List[AppliedRule] = Field(default_factory=list)
    dropped_rules: List[DroppedRule] = Field(default_factory=list)
    total_discount: Decimal = Field(default=Decimal("0.00"), ge=0)
    per_line_discount: Dict[str, Decimal] = Field(default_factory=dict)
    shipping_discount: Decimal = Field(default=Decimal("0.00"), ge=0)
    free_shipping: bool = Field(default=False, description="运费未知时以标记表示免运费")
    subtotal: Decimal = Field(default=Decimal("0.00"), ge=0)
    final_amount: Decimal = Field(default=Decimal("0.00"), ge=0)

    @property
    def applied_rule_ids(self) -> List[str]:
        return [rule.rule_id for rule in self.applied_rules]


class CodeValidationResult(BaseModel):
    """优惠码校验接口结果"""

    valid: bool
    code: str
    rule_id: Optional[str] = None
    discount_amount: Optional[Decimal] = None
    final_amount: Optional[Decimal] = None
    free_shipping: bool = False
    errors: List[ReasonCode] = Field(default_factory=list)
    messages: List[str] = Field(default_factory=list)


class CheckoutPreview(BaseModel):
    """结算预览（仅供参考，提交时重新计算）"""

    resolution: ResolutionResult
    ineligible: List[EligibilityResult] = Field(default_factory=list)
    evaluated_at: datetime


class CheckoutCommitResult(BaseModel):
    """结算提交结果"""

    order_id: str
    resolution: ResolutionResult
    ineligible: List[EligibilityResult] = Field(default_factory=list)
    committed_rule_ids: List[str] = Field(default_factory=list)
    replayed: bool = Field(default=False, description="是否为同一订单的重复提交")
    committed_at: datetime
