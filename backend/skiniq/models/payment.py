"""
支付与权益模型模块

Payment 表示一次购买尝试，只由支付回调修改状态，从不删除。
Entitlement 表示已授予的访问权限，每笔成功支付恰好对应一条。
"""
from datetime import datetime

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Integer, String
from sqlmodel import Field, SQLModel

from skiniq.core.snowflake import generate_id
from skiniq.enums import PaymentStatus

from .base import utc_now


class Payment(SQLModel, table=True):
    """
    支付记录模型

    字段说明：
    - id: 主键
    - user_id: 用户 ID（外键）
    - product_code: 产品代码（如 plan_access）
    - amount: 金额（最小货币单位，卢布为戈比）
    - currency: 货币
    - provider: 支付渠道（yookassa）
    - provider_payment_id: 支付平台侧的支付 ID（唯一，回调按它查找）
    - idempotency_key: 客户端幂等键（唯一，防止重复创建）
    - status: pending / completed / failed
    - provider_payload: 支付平台返回/回调的原始数据
    """
    __tablename__ = "payments"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    product_code: str = Field(max_length=64)
    amount: int = Field(sa_column=Column(Integer, nullable=False))
    currency: str = Field(default="RUB", max_length=8)
    provider: str = Field(default="yookassa", max_length=32)
    provider_payment_id: str | None = Field(
        default=None, sa_column=Column(String(128), unique=True, index=True, nullable=True)
    )
    idempotency_key: str = Field(
        sa_column=Column(String(128), unique=True, index=True, nullable=False)
    )
    status: PaymentStatus = Field(
        default=PaymentStatus.pending, sa_column=Column(String(16), nullable=False)
    )
    provider_payload: dict | None = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class Entitlement(SQLModel, table=True):
    """
    权益模型

    用户是否有某项权限 = 存在 code 匹配且 valid_until 为空或在未来的记录。
    granted_from_payment_id 唯一：同一笔支付的重复回调（包括不同进程上的并发回调）
    最多只能插入一条。

    字段说明：
    - code: 权益代码（如 paid_access）
    - valid_until: 过期时间，为空表示永久
    - granted_from_payment_id: 来源支付（唯一）
    """
    __tablename__ = "entitlements"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    code: str = Field(sa_column=Column(String(64), index=True, nullable=False))
    valid_until: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    granted_from_payment_id: int = Field(
        sa_column=Column(
            BigInteger,
            ForeignKey("payments.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        )
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
