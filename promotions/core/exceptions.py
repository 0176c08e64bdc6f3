"""
业务异常定义
不适用/冲突被丢弃属于正常结果，以数据形式返回，不在此处定义
"""

from typing import Optional


class BusinessException(Exception):
    """业务异常基类，由API层统一转换为JSON响应"""

    def __init__(self, code: str, message: str, status_code: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class RuleValidationError(BusinessException):
    """规则或活动定义不合法（创建/更新时拒绝）"""

    def __init__(self, message: str):
        super().__init__("RULE_VALIDATION_ERROR", message, status_code=422)


class EventTransitionError(BusinessException):
    """活动状态迁移不合法"""

    def __init__(self, message: str):
        super().__init__("EVENT_TRANSITION_ERROR", message, status_code=409)


class UsageLimitExceededError(BusinessException):
    """提交时使用次数已达上限，订单必须拒绝，不允许重试"""

    def __init__(self, rule_id: str, scope: str):
        super().__init__(
            "USAGE_LIMIT_EXCEEDED",
            f"优惠规则 {rule_id} 的使用次数已达上限 ({scope})",
            status_code=409,
        )
        self.rule_id = rule_id
        self.scope = scope


class LedgerUnavailableError(Exception):
    """使用记录存储暂时不可用（可按订单号幂等重试）"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class UsageLedgerError(BusinessException):
    """使用记录写入最终失败，订单提交必须中止"""

    def __init__(self, order_id: str, message: str):
        super().__init__(
            "USAGE_LEDGER_ERROR",
            f"订单 {order_id} 使用记录写入失败: {message}",
            status_code=503,
        )
        self.order_id = order_id


class OrderReversedError(BusinessException):
    """已冲正的订单不能再次提交"""

    def __init__(self, order_id: str):
        super().__init__(
            "ORDER_REVERSED",
            f"订单 {order_id} 的优惠使用已冲正，不能再次提交",
            status_code=409,
        )
        self.order_id = order_id
