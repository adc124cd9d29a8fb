"""
业务异常定义
所有失败都限定在单个请求/操作范围内，由API层统一转换为HTTP响应
"""

from typing import Any, Dict, Optional


class BusinessException(Exception):
    """业务异常基类"""

    status_code: int = 400
    error_code: str = "business_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(BusinessException):
    """请求参数或规则配置不合法，不可重试"""

    status_code = 400
    error_code = "validation_error"


class NotFoundException(BusinessException):
    """促销或优惠券不存在"""

    status_code = 404
    error_code = "not_found"


class ConflictException(BusinessException):
    """与当前数据状态冲突（重复代码、删除已使用促销等）"""

    status_code = 409
    error_code = "conflict"


class InvalidStatusTransitionException(ConflictException):
    """非法的状态流转"""

    error_code = "invalid_status_transition"

    def __init__(self, current_status: str, new_status: str):
        super().__init__(
            f"非法的状态流转: {current_status} -> {new_status}",
            details={"current_status": current_status, "requested_status": new_status},
        )
        self.current_status = current_status
        self.new_status = new_status


class UsageLimitExceededException(ConflictException):
    """写入使用记录时使用上限已被并发请求占满"""

    error_code = "usage_limit_exceeded"


class CouponRejectedException(ValidationException):
    """优惠券未通过兑换校验"""

    error_code = "coupon_rejected"

    def __init__(self, reason: str, message: str):
        super().__init__(message, details={"reason": reason})
        self.reason = reason
