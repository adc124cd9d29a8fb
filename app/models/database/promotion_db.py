"""
促销相关数据库模型
"""

from datetime import datetime
from sqlalchemy import Column, String, Integer, Numeric, Text, Boolean, DateTime, JSON, ForeignKey, Index
from sqlalchemy.orm import relationship
from app.core.database import Base


class PromotionDB(Base):
    """促销数据库表"""

    __tablename__ = "promotions"

    # 主键和基本信息
    promotion_id = Column(String(50), primary_key=True, comment="促销ID")
    name = Column(String(100), nullable=False, comment="促销名称")
    description = Column(String(500), comment="促销描述")
    type = Column(String(40), nullable=False, index=True, comment="促销类型")
    status = Column(String(20), nullable=False, default="draft", index=True, comment="促销状态")
    target = Column(String(40), nullable=False, default="all_products", comment="目标范围")

    # 有效期
    start_date = Column(DateTime, nullable=False, index=True, comment="开始时间")
    end_date = Column(DateTime, nullable=False, index=True, comment="结束时间")

    # 条件与规则 (JSON存储)
    conditions = Column(JSON, nullable=False, default=dict, comment="适用条件")
    rules = Column(JSON, nullable=False, default=dict, comment="折扣规则")

    # 统计计数，与使用记录同一事务更新
    total_uses = Column(Integer, nullable=False, default=0, comment="总使用次数")
    total_discount_given = Column(Numeric(12, 2), nullable=False, default=0, comment="累计折扣金额")
    conversion_count = Column(Integer, nullable=False, default=0, comment="转化次数")
    view_count = Column(Integer, nullable=False, default=0, comment="浏览次数")

    # 开关
    is_active = Column(Boolean, nullable=False, default=True, comment="是否启用")
    is_automatic = Column(Boolean, nullable=False, default=False, comment="是否自动应用")
    priority = Column(Integer, nullable=False, default=1, comment="优先级")
    auto_apply_to_cart = Column(Boolean, nullable=False, default=False, comment="自动加入购物车")

    internal_notes = Column(Text, comment="内部备注")
    created_by = Column(String(50), comment="创建人")
    last_modified_by = Column(String(50), comment="最后修改人")

    # 时间戳
    created_at = Column(DateTime, nullable=False, default=datetime.now, comment="创建时间")
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now, comment="更新时间")

    # 关系映射
    usage_history = relationship(
        "PromotionUsageDB",
        back_populates="promotion",
        cascade="all, delete-orphan",
        order_by="PromotionUsageDB.used_at",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_promotion_status_window", "status", "start_date", "end_date"),
        Index("idx_promotion_auto_priority", "is_automatic", "priority"),
        {"comment": "促销信息表"},
    )


class PromotionUsageDB(Base):
    """促销使用记录表（只追加）"""

    __tablename__ = "promotion_usage"

    usage_id = Column(String(50), primary_key=True, comment="使用记录ID")
    promotion_id = Column(String(50), ForeignKey("promotions.promotion_id"), nullable=False, index=True, comment="促销ID")
    user_id = Column(String(50), nullable=False, index=True, comment="用户ID")
    order_id = Column(String(50), nullable=False, comment="订单ID")
    discount_amount = Column(Numeric(12, 2), nullable=False, comment="折扣金额")
    order_total = Column(Numeric(12, 2), comment="订单金额")
    coupon_code = Column(String(50), comment="使用的优惠券代码")
    used_at = Column(DateTime, nullable=False, default=datetime.now, comment="使用时间")

    promotion = relationship("PromotionDB", back_populates="usage_history")

    __table_args__ = (
        Index("idx_promotion_usage_user", "promotion_id", "user_id"),
        {"comment": "促销使用记录表"},
    )
