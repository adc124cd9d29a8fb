"""
优惠券数据库模型
"""

from datetime import datetime
from sqlalchemy import Column, String, Integer, Numeric, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from app.core.database import Base


class CouponDB(Base):
    """优惠券数据库表"""

    __tablename__ = "coupons"

    # 主键和基本信息
    coupon_id = Column(String(50), primary_key=True, comment="优惠券ID")
    code = Column(String(50), nullable=False, unique=True, index=True, comment="优惠券代码")
    name = Column(String(100), nullable=False, comment="优惠券名称")
    description = Column(String(300), comment="优惠券描述")
    type = Column(String(20), nullable=False, comment="优惠券类型")
    status = Column(String(20), nullable=False, default="active", index=True, comment="优惠券状态")
    promotion_id = Column(String(50), ForeignKey("promotions.promotion_id"), nullable=False, index=True, comment="关联促销ID")

    # 使用限制
    max_uses = Column(Integer, comment="总使用次数上限")
    max_uses_per_user = Column(Integer, comment="单用户使用次数上限")
    specific_user_id = Column(String(50), index=True, comment="限定用户ID")
    minimum_purchase_amount = Column(Numeric(12, 2), comment="最低消费金额")
    requires_minimum_items = Column(Boolean, nullable=False, default=False, comment="是否要求最低件数")
    minimum_items = Column(Integer, comment="最低件数")

    # 有效期
    valid_from = Column(DateTime, nullable=False, comment="生效时间")
    valid_until = Column(DateTime, nullable=False, index=True, comment="失效时间")

    # 统计计数
    total_uses = Column(Integer, nullable=False, default=0, comment="总使用次数")
    total_discount_given = Column(Numeric(12, 2), nullable=False, default=0, comment="累计折扣金额")
    view_count = Column(Integer, nullable=False, default=0, comment="查看次数")
    attempt_count = Column(Integer, nullable=False, default=0, comment="尝试兑换次数")
    success_count = Column(Integer, nullable=False, default=0, comment="成功兑换次数")
    failure_count = Column(Integer, nullable=False, default=0, comment="失败兑换次数")
    last_used_at = Column(DateTime, comment="最后使用时间")
    last_used_by = Column(String(50), comment="最后使用用户")

    is_active = Column(Boolean, nullable=False, default=True, comment="是否启用")
    is_public = Column(Boolean, nullable=False, default=False, comment="是否公开")
    created_by = Column(String(50), comment="创建人")

    # 时间戳
    created_at = Column(DateTime, nullable=False, default=datetime.now, comment="创建时间")
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now, comment="更新时间")

    # 关系映射
    usage_history = relationship(
        "CouponUsageDB",
        back_populates="coupon",
        cascade="all, delete-orphan",
        order_by="CouponUsageDB.used_at",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_coupon_status_valid_until", "status", "valid_until"),
        {"comment": "优惠券信息表"},
    )


class CouponUsageDB(Base):
    """优惠券使用记录表"""

    __tablename__ = "coupon_usage"

    usage_id = Column(String(50), primary_key=True, comment="使用记录ID")
    coupon_id = Column(String(50), ForeignKey("coupons.coupon_id"), nullable=False, index=True, comment="优惠券ID")
    user_id = Column(String(50), nullable=False, index=True, comment="使用用户ID")
    order_id = Column(String(50), nullable=False, comment="订单ID")
    discount_amount = Column(Numeric(12, 2), nullable=False, comment="折扣金额")
    order_total = Column(Numeric(12, 2), nullable=False, default=0, comment="订单金额")
    used_at = Column(DateTime, nullable=False, default=datetime.now, comment="使用时间")

    coupon = relationship("CouponDB", back_populates="usage_history")

    __table_args__ = (
        Index("idx_coupon_usage_user", "coupon_id", "user_id"),
        {"comment": "优惠券使用记录表"},
    )
